# deploy_engine/orchestrator/deployment_orchestrator.py
"""Deployment orchestrator - runs the deploy pipeline end to end."""

import logging
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from deploy_engine.artifacts.archive import ArchiveStager
from deploy_engine.artifacts.inspection import detect_database_kind, detect_framework
from deploy_engine.artifacts.resolver import ArtifactResolver
from deploy_engine.cluster.commands import ClusterCommands
from deploy_engine.config import DeploySettings
from deploy_engine.connection_strings import ConnectionStringConfigurator
from deploy_engine.core.errors import ConfigurationError, PortUnavailable, ReadinessTimeout
from deploy_engine.core.models import (
    ClusterConnectionInfo,
    DatabaseKind,
    DeploymentDatabase,
    DeploymentRequest,
    EnvironmentRecord,
    FrameworkType,
)
from deploy_engine.database.restore import DatabaseRestoreEngine, source_identity_for
from deploy_engine.filesystem import FileSystem
from deploy_engine.orchestrator.browser import BrowserLauncher
from deploy_engine.orchestrator.prompter import SitePrompter, is_port_available, is_valid_port
from deploy_engine.readiness.poller import ReadinessPoller
from deploy_engine.registry.repository import EnvironmentRepository
from deploy_engine.strategies.base import DeploymentStrategy, StrategyKind
from deploy_engine.strategies.selector import DeploymentStrategySelector

logger = logging.getLogger(__name__)

EXCLUDED_DIRECTORIES = {"db"}
EXCLUDED_EXTENSIONS = {".bak", ".backup"}


def is_excluded_from_copy(path: Path) -> bool:
    """Backup payloads never reach the live tree: ``db`` folders and backup files."""
    if path.is_dir():
        return path.name.lower() in EXCLUDED_DIRECTORIES
    return path.suffix.lower() in EXCLUDED_EXTENSIONS


class DeploymentStage(Enum):
    RESOLVE_ARTIFACT = "ResolveArtifact"
    STAGE_LOCAL_COPY = "StageLocalCopy"
    DETERMINE_TARGET_FOLDER = "DetermineTargetFolder"
    COPY_FILES = "CopyFilesExcludingBackups"
    DETECT_DATABASE_KIND = "DetectDatabaseKind"
    RESTORE_DATABASE = "RestoreDatabase"
    DEPLOY_VIA_STRATEGY = "DeployViaStrategy"
    CONFIGURE_CONNECTION_STRINGS = "ConfigureConnectionStrings"
    REGISTER_ENVIRONMENT = "RegisterEnvironment"
    WAIT_UNTIL_READY = "WaitUntilReady"
    AUTO_LAUNCH_BROWSER = "AutoLaunchBrowser"


# Failures here are reported and the pipeline carries on
NON_FATAL_STAGES = {DeploymentStage.WAIT_UNTIL_READY, DeploymentStage.AUTO_LAUNCH_BROWSER}


@dataclass
class DeploymentContext:
    """Values handed from one stage to the next."""
    request: DeploymentRequest
    strategy: DeploymentStrategy
    source_path: Optional[str] = None
    unzipped_path: Optional[str] = None
    deployment_folder: Optional[str] = None
    database_kind: Optional[DatabaseKind] = None
    cluster_info: Optional[ClusterConnectionInfo] = None
    database: Optional[DeploymentDatabase] = None
    environment: Optional[EnvironmentRecord] = None
    ready: Optional[bool] = None
    completed_stages: List[DeploymentStage] = field(default_factory=list)
    failed_stage: Optional[DeploymentStage] = None
    exit_code: int = 0

    @property
    def is_managed_host(self) -> bool:
        return self.strategy.kind is StrategyKind.MANAGED_HOST


class DeploymentOrchestrator:
    """
    Runs a deployment as a linear pipeline.

    Flow:
    1. Fill in site name and port (interactive when missing)
    2. Resolve artifact, stage it locally, pick the target folder
    3. Extract and copy files without backups
    4. Detect database kind, restore the database
    5. Start through the selected strategy, write connection strings
    6. Register the environment
    7. Wait for readiness and launch the browser (best effort)

    Every stage returns 0 or 1. Collaborator exceptions are caught at
    the stage boundary and logged.
    """

    def __init__(
        self,
        settings: DeploySettings,
        resolver: ArtifactResolver,
        stager: ArchiveStager,
        restore_engine: DatabaseRestoreEngine,
        cluster: ClusterCommands,
        strategy_selector: DeploymentStrategySelector,
        connection_strings: ConnectionStringConfigurator,
        registry: EnvironmentRepository,
        readiness_poller: ReadinessPoller,
        browser_launcher: BrowserLauncher,
        prompter: Optional[SitePrompter] = None,
        file_system: Optional[FileSystem] = None,
        port_checker: Callable[[int], bool] = is_port_available,
        current_directory: Callable[[], str] = os.getcwd,
    ):
        self._settings = settings
        self._resolver = resolver
        self._stager = stager
        self._restore_engine = restore_engine
        self._cluster = cluster
        self._selector = strategy_selector
        self._connection_strings = connection_strings
        self._registry = registry
        self._readiness = readiness_poller
        self._browser = browser_launcher
        self._prompter = prompter or SitePrompter()
        self._fs = file_system or FileSystem()
        self._port_available = port_checker
        self._cwd = current_directory

    # ============================================
    # ENTRY POINTS
    # ============================================

    def deploy(self, request: DeploymentRequest) -> int:
        """Run the pipeline; 0 on success, the failing stage's code otherwise."""
        return self.run(request).exit_code

    def run(self, request: DeploymentRequest) -> DeploymentContext:
        strategy = self._selector.select(request.deployment_method or "auto", request.no_managed_host)
        context = DeploymentContext(request=request, strategy=strategy)

        if context.is_managed_host and self._settings.managed_host_root_path:
            self._fs.create_directory(self._settings.managed_host_root_path)

        self._complete_request(context)
        self._log_summary(context)

        for stage, handler in self._pipeline():
            code = handler(context)
            if code == 0:
                context.completed_stages.append(stage)
                continue

            if stage in NON_FATAL_STAGES:
                logger.warning(f"[{stage.value}] - did not complete, continuing")
                continue

            context.failed_stage = stage
            context.exit_code = code
            logger.error(f"[{stage.value}] - ❌ Deployment aborted")
            return context

        logger.info(f"✅ Deployment of {request.site_name} completed")
        return context

    def _pipeline(self):
        return [
            (DeploymentStage.RESOLVE_ARTIFACT, self._resolve_artifact),
            (DeploymentStage.STAGE_LOCAL_COPY, self._stage_local_copy),
            (DeploymentStage.DETERMINE_TARGET_FOLDER, self._determine_target_folder),
            (DeploymentStage.COPY_FILES, self._copy_files),
            (DeploymentStage.DETECT_DATABASE_KIND, self._detect_database_kind),
            (DeploymentStage.RESTORE_DATABASE, self._restore_database),
            (DeploymentStage.DEPLOY_VIA_STRATEGY, self._deploy_via_strategy),
            (DeploymentStage.CONFIGURE_CONNECTION_STRINGS, self._configure_connection_strings),
            (DeploymentStage.REGISTER_ENVIRONMENT, self._register_environment),
            (DeploymentStage.WAIT_UNTIL_READY, self._wait_until_ready),
            (DeploymentStage.AUTO_LAUNCH_BROWSER, self._auto_launch_browser),
        ]

    # ============================================
    # REQUEST COMPLETION
    # ============================================

    def _site_root(self, context: DeploymentContext) -> str:
        if context.is_managed_host:
            return self._settings.managed_host_root_path or ""
        return self._cwd()

    def _complete_request(self, context: DeploymentContext) -> None:
        """Prompt for the site name and port before anything runs."""
        request = context.request

        if not request.site_name:
            request.site_name = self._prompter.ask_site_name(self._site_root(context))

        if context.is_managed_host:
            if not is_valid_port(request.site_port):
                request.site_port = self._prompter.ask_managed_host_port()
            return

        if not is_valid_port(request.site_port):
            request.site_port = self._prompter.ask_self_hosted_port(self._settings.default_site_port)
        elif not self._port_available(request.site_port):
            logger.warning(f"[Port check] - {PortUnavailable(request.site_port)}")

    def _log_summary(self, context: DeploymentContext) -> None:
        platform = {"darwin": "macOS", "win32": "Windows"}.get(sys.platform, "Linux")
        logger.info(f"[OS Platform] - {platform}")
        logger.info(f"[Is IIS Deployment] - {context.is_managed_host}")
        logger.info(f"[Site Name] - {context.request.site_name}")
        logger.info(f"[Site Port] - {context.request.site_port}")

    # ============================================
    # STAGES
    # ============================================

    def _resolve_artifact(self, context: DeploymentContext) -> int:
        request = context.request
        try:
            if not request.zip_file and request.product:
                root = self._settings.remote_artifact_server_path
                if not root:
                    raise ConfigurationError(
                        "DEPLOY_REMOTE_ARTIFACT_SERVER_PATH must be set to deploy by product name"
                    )
                request.zip_file = self._resolver.resolve(
                    root, request.product, request.database_kind, request.runtime_platform
                )
        except Exception as e:
            logger.error(f"[Resolve artifact] - {e}")
            return 1

        if not request.zip_file:
            logger.error("[Resolve artifact] - Either a zip file or a product must be given")
            return 1

        if not self._fs.exists_file(request.zip_file) and not self._fs.exists_directory(request.zip_file):
            logger.error(f"Could not find zip file: {request.zip_file}")
            return 1

        context.source_path = request.zip_file
        logger.info(f"[Artifact] - {context.source_path}")
        return 0

    def _stage_local_copy(self, context: DeploymentContext) -> int:
        try:
            context.source_path = self._stager.copy_local_when_network_drive(context.source_path)
        except Exception as e:
            logger.error(f"[Staging] - Could not copy {context.source_path} locally: {e}")
            return 1
        context.request.zip_file = context.source_path
        return 0

    def _determine_target_folder(self, context: DeploymentContext) -> int:
        request = context.request
        if not request.site_name or not request.site_name.strip():
            logger.error("Site name is required but was empty")
            return 1

        if context.is_managed_host:
            root = self._settings.managed_host_root_path
            if not root:
                logger.error("IIS root folder is not configured (DEPLOY_MANAGED_HOST_ROOT_PATH)")
                return 1
            context.deployment_folder = str(Path(root) / request.site_name)
        elif request.app_path:
            context.deployment_folder = request.app_path
        else:
            context.deployment_folder = str(Path(self._cwd()) / request.site_name)

        logger.info(f"[Deployment folder] - {context.deployment_folder}")
        return 0

    def _copy_files(self, context: DeploymentContext) -> int:
        try:
            context.unzipped_path = self._stager.unzip_or_take_existing(context.source_path)

            if not self._fs.exists_directory(context.deployment_folder):
                logger.info(f"[Creating deployment folder] - {context.deployment_folder}")
                self._fs.create_directory(context.deployment_folder)

            logger.info(
                f"[Copy deployment files]\n"
                f"    From: {context.unzipped_path}\n"
                f"    To:   {context.deployment_folder}"
            )
            copied = self._fs.copy_directory_with_filter(
                context.unzipped_path, context.deployment_folder, is_excluded_from_copy
            )
        except Exception as e:
            logger.error(f"[Copy deployment files] - {e}")
            return 1

        logger.info(f"[Copy deployment files] - {copied} file(s) copied")
        return 0

    def _detect_database_kind(self, context: DeploymentContext) -> int:
        try:
            context.database_kind = detect_database_kind(context.unzipped_path, self._fs)
        except Exception as e:
            logger.warning(f"[DetectDataBase] - Could not detect database type: {e}")
            logger.info("[DetectDataBase] - Defaulting to Postgres")
            context.database_kind = DatabaseKind.POSTGRES
        logger.info(f"[DetectDataBase] - {context.database_kind.value}")
        return 0

    def _restore_database(self, context: DeploymentContext) -> int:
        request = context.request
        identity = source_identity_for(request.zip_file, context.unzipped_path)

        try:
            if request.uses_local_db_server:
                logger.info(f"[Database Restore Mode] - Local server: {request.db_server_name}")
                context.database = self._restore_engine.restore_to_local_server(
                    context.unzipped_path,
                    request.site_name,
                    request.db_server_name,
                    identity,
                    request.drop_if_exists,
                )
            else:
                context.cluster_info = (
                    self._cluster.get_mssql_connection_info()
                    if context.database_kind is DatabaseKind.MSSQL
                    else self._cluster.get_postgres_connection_info()
                )
                context.database = self._restore_engine.restore_to_cluster(
                    context.unzipped_path,
                    request.site_name,
                    context.database_kind,
                    identity,
                    request.drop_if_exists,
                    context.cluster_info,
                )
        except Exception as e:
            logger.error(f"[Database restore failed] - {e}")
            return 1

        return 0

    def _deploy_via_strategy(self, context: DeploymentContext) -> int:
        try:
            result = context.strategy.deploy(context.deployment_folder, context.request)
        except Exception as e:
            logger.error(f"Deployment failed: {e}")
            return 1

        if result != 0:
            logger.error("Failed to deploy application")
            return result

        url = context.strategy.get_application_url(context.request)
        logger.info(f"[Application deployed successfully] - URL: {url}")
        return 0

    def _configure_connection_strings(self, context: DeploymentContext) -> int:
        try:
            self._connection_strings.configure(
                context.deployment_folder,
                context.request,
                context.database_kind,
                context.cluster_info,
            )
        except Exception as e:
            logger.error(f"[Connection string] - {e}")
            return 1
        return 0

    def _register_environment(self, context: DeploymentContext) -> int:
        request = context.request
        try:
            record = EnvironmentRecord(
                name=request.site_name,
                uri=context.strategy.get_application_url(request),
                login=self._settings.default_login,
                password=self._settings.default_password,
                is_net_core=detect_framework(context.deployment_folder, self._fs) is FrameworkType.NET_CORE,
                environment_path=context.deployment_folder,
            )
            context.environment = self._registry.register(record)
        except Exception as e:
            logger.error(f"[Register environment] - {e}")
            return 1
        return 0

    def _wait_until_ready(self, context: DeploymentContext) -> int:
        # The managed host supervises its own startup
        if context.is_managed_host:
            return 0

        logger.info("Waiting for server to become ready...")
        try:
            context.ready = self._readiness.wait_until_ready(context.request.site_name)
        except Exception as e:
            logger.warning(f"[Readiness] - Health check could not run: {e}")
            context.ready = False
            return 1
        if not context.ready:
            logger.warning(f"[Readiness] - {ReadinessTimeout(context.request.site_name)}")
            return 1
        return 0

    def _auto_launch_browser(self, context: DeploymentContext) -> int:
        if not context.request.auto_run:
            return 0
        return self._browser.launch(context.strategy.get_application_url(context.request))
