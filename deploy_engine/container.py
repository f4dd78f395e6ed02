# deploy_engine/container.py

"""Dependency injection container - wires all services together."""

from deploy_engine.config import settings

from deploy_engine.filesystem import FileSystem
from deploy_engine.process.executor import ProcessExecutor

from deploy_engine.artifacts.archive import ArchiveStager
from deploy_engine.artifacts.resolver import ArtifactResolver

from deploy_engine.cluster.commands import ClusterCommands
from deploy_engine.database.clients import DatabaseClientFactory
from deploy_engine.database.restore import DatabaseRestoreEngine

from deploy_engine.cache.redis_slots import RedisSlotAllocator
from deploy_engine.connection_strings import ConnectionStringConfigurator

from deploy_engine.strategies.managed_host import ManagedHostStrategy
from deploy_engine.strategies.self_hosted import SelfHostedStrategy
from deploy_engine.strategies.selector import DeploymentStrategySelector

from deploy_engine.registry.repository import EnvironmentRepository
from deploy_engine.readiness.health_probe import HealthCheckProbe
from deploy_engine.readiness.poller import ReadinessPoller

from deploy_engine.orchestrator.browser import BrowserLauncher
from deploy_engine.orchestrator.deployment_orchestrator import DeploymentOrchestrator


# ============================================
# INFRASTRUCTURE
# ============================================

file_system = FileSystem()
process_executor = ProcessExecutor()
cluster_commands = ClusterCommands(settings)
environment_repository = EnvironmentRepository()


# ============================================
# SERVICES
# ============================================

artifact_resolver = ArtifactResolver(file_system)
archive_stager = ArchiveStager(settings.products_folder, file_system)

restore_engine = DatabaseRestoreEngine(
    settings=settings,
    cluster=cluster_commands,
    process_executor=process_executor,
    client_factory=DatabaseClientFactory(),
    file_system=file_system,
)

strategy_selector = DeploymentStrategySelector(
    managed_host=ManagedHostStrategy(process_executor),
    self_hosted=SelfHostedStrategy(process_executor, file_system),
)

connection_string_configurator = ConnectionStringConfigurator(settings, RedisSlotAllocator())

readiness_poller = ReadinessPoller(
    probe=HealthCheckProbe(
        environment_repository,
        health_check_path=settings.health_check_path,
        timeout=settings.health_check_timeout,
    ),
    initial_delay=settings.readiness_initial_delay,
    max_attempts=settings.readiness_max_attempts,
    interval=settings.readiness_interval,
)


# ============================================
# ORCHESTRATOR
# ============================================

deployment_orchestrator = DeploymentOrchestrator(
    settings=settings,
    resolver=artifact_resolver,
    stager=archive_stager,
    restore_engine=restore_engine,
    cluster=cluster_commands,
    strategy_selector=strategy_selector,
    connection_strings=connection_string_configurator,
    registry=environment_repository,
    readiness_poller=readiness_poller,
    browser_launcher=BrowserLauncher(process_executor),
    file_system=file_system,
)
