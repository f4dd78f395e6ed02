# deploy_engine/database/restore.py
"""
Database restore engine.

PostgreSQL backups are restored once into a template database keyed by
source identity, and every deployment gets a fresh copy of that
template. MSSQL backups are restored directly into the target database.

Two backends:
- cluster: the shared database containers on the cluster host; backups
  are staged inside the container and removed afterwards
- local: a named server from settings; pg_restore runs as a local
  subprocess against the configured host and port
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from deploy_engine.cluster.commands import ClusterCommands, ContainerKind
from deploy_engine.config import DeploySettings, LocalDbServerConfiguration
from deploy_engine.core.errors import (
    BackupNotFound,
    ConfigurationError,
    ConnectionTestFailed,
    DeploymentError,
    ProcessStartFailed,
    RestoreToolFailed,
    TargetAlreadyExists,
)
from deploy_engine.core.models import (
    BackupFileType,
    ClusterConnectionInfo,
    DatabaseKind,
    DeploymentDatabase,
)
from deploy_engine.database.backup_detector import BackupFileDetector
from deploy_engine.database.clients import DatabaseClientFactory
from deploy_engine.database.connection_tester import DbConnectionTester
from deploy_engine.database.pg_tools import PostgresToolsLocator
from deploy_engine.database.templates import format_template_metadata, new_template_name
from deploy_engine.filesystem import FileSystem
from deploy_engine.process.executor import ProcessExecutor
from deploy_engine.process.models import ProcessExecutionOptions, ProcessOutputStream

logger = logging.getLogger(__name__)

BACKUP_EXTENSION = {
    DatabaseKind.POSTGRES: ".backup",
    DatabaseKind.MSSQL: ".bak",
}

_COMPATIBLE_BACKUP = {
    DatabaseKind.POSTGRES: BackupFileType.POSTGRES_BACKUP,
    DatabaseKind.MSSQL: BackupFileType.MSSQL_BACKUP,
}


def source_identity_for(zip_file: Optional[str], unzipped_directory: str) -> str:
    """Template key: archive stem, or directory name for extracted sources."""
    if zip_file:
        path = Path(zip_file)
        return path.name if path.is_dir() else path.stem
    return Path(unzipped_directory).name


class DatabaseRestoreEngine:
    """Restores the database that ships with an extracted artifact."""

    def __init__(
        self,
        settings: DeploySettings,
        cluster: ClusterCommands,
        process_executor: ProcessExecutor,
        client_factory: Optional[DatabaseClientFactory] = None,
        file_system: Optional[FileSystem] = None,
        pg_tools: Optional[PostgresToolsLocator] = None,
        connection_tester: Optional[DbConnectionTester] = None,
        backup_detector: Optional[BackupFileDetector] = None,
    ):
        self.settings = settings
        self.cluster = cluster
        self.process_executor = process_executor
        self.client_factory = client_factory or DatabaseClientFactory()
        self.fs = file_system or FileSystem()
        self.pg_tools = pg_tools or PostgresToolsLocator()
        self.connection_tester = connection_tester or DbConnectionTester(self.client_factory)
        self.backup_detector = backup_detector or BackupFileDetector()

        # Serializes lookup-or-create per source identity within this process
        self._template_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ============================================
    # TEMPLATE RESOLUTION
    # ============================================

    def _lock_for(self, source_identity: str) -> threading.Lock:
        with self._locks_guard:
            return self._template_locks.setdefault(source_identity, threading.Lock())

    def ensure_template(self, client, source_identity: str, restore_into: Callable[[str], None]) -> str:
        """
        Return the template for ``source_identity``, restoring one if needed.

        ``restore_into`` receives the new, empty template database name and
        must raise on failure.
        """
        with self._lock_for(source_identity):
            existing = client.find_by_source_comment(source_identity)
            if existing:
                logger.info(
                    f"[Database restore] - Found existing template '{existing}' "
                    f"for source '{source_identity}', skipping restore"
                )
                return existing

            template_name = new_template_name()
            logger.info(
                f"[Database restore] - Template for '{source_identity}' does not exist, "
                f"creating '{template_name}'"
            )
            client.create_database(template_name)
            try:
                restore_into(template_name)
            except Exception:
                self._drop_failed_template(client, template_name)
                raise
            client.set_as_template(template_name)

            metadata = format_template_metadata(source_identity)
            client.set_comment(template_name, metadata)
            logger.info(f"[Template metadata] - {metadata}")
            return template_name

    @staticmethod
    def _drop_failed_template(client, template_name: str) -> None:
        logger.warning(f"[Database restore] - Restore failed, dropping unfinished template {template_name}")
        try:
            client.drop_database(template_name)
        except Exception as e:
            logger.error(f"[Database restore] - Could not drop template {template_name}: {e}")

    def prepare_target(self, client, db_name: str, drop_if_exists: bool) -> None:
        """Fail or drop when ``db_name`` is already present."""
        if not client.database_exists(db_name):
            return
        if not drop_if_exists:
            raise TargetAlreadyExists(db_name)

        logger.warning(f"[Database restore] - Database {db_name} already exists, dropping")
        client.drop_database(db_name)
        logger.info(f"[Database restore] - Dropped existing database {db_name}")

    def create_from_template(self, client, template_name: str, db_name: str, drop_if_exists: bool) -> DeploymentDatabase:
        self.prepare_target(client, db_name, drop_if_exists)
        client.create_database_from_template(template_name, db_name)
        logger.info(f"[Database created] - {db_name} from template {template_name}")
        return DeploymentDatabase(name=db_name, template_name=template_name)

    # ============================================
    # BACKUP DISCOVERY
    # ============================================

    def find_backup_file(self, unzipped_directory: str, extensions: Iterable[str]) -> str:
        """Look in ``db/`` first, then the root. Raises BackupNotFound."""
        wanted = {e.lower() for e in extensions}
        root = Path(unzipped_directory)
        db_directory = root / "db"

        for directory in (db_directory, root):
            for file_path in self.fs.list_files(directory):
                if file_path.suffix.lower() in wanted:
                    logger.info(f"[Found backup file] - {file_path}")
                    return str(file_path)

        logger.error(f"[Database restore failed] - Backup file not found in {root}")
        directories = ", ".join(d.name for d in self.fs.list_directories(root))
        logger.error(f"[Database restore failed] - Directory structure: {directories}")
        root_files = ", ".join(f.name for f in self.fs.list_files(root)[:10])
        logger.error(f"[Database restore failed] - Files in root: {root_files}")
        if self.fs.exists_directory(db_directory):
            db_files = ", ".join(f.name for f in self.fs.list_files(db_directory)[:10])
            logger.error(f"[Database restore failed] - Files in db/: {db_files}")

        raise BackupNotFound(
            f"No {' or '.join(sorted(wanted))} backup file found in {db_directory} or {root}"
        )

    # ============================================
    # CLUSTER BACKEND
    # ============================================

    def restore_to_cluster(
        self,
        unzipped_directory: str,
        db_name: str,
        database_kind: DatabaseKind,
        source_identity: str,
        drop_if_exists: bool = False,
        connection_info: Optional[ClusterConnectionInfo] = None,
    ) -> DeploymentDatabase:
        """
        ``connection_info`` is the cluster endpoint resolved by the caller;
        it is looked up from the cluster when omitted.
        """
        logger.info("[Database Restore Mode] - Cluster")
        if database_kind is DatabaseKind.MSSQL:
            info = connection_info or self.cluster.get_mssql_connection_info()
            return self._restore_mssql_to_cluster(unzipped_directory, db_name, drop_if_exists, info)

        info = connection_info or self.cluster.get_postgres_connection_info()
        client = self.client_factory.create_postgres(info.host, info.db_port, info.db_username, info.db_password)

        def restore_into(template_name: str) -> None:
            backup = self.find_backup_file(unzipped_directory, [BACKUP_EXTENSION[DatabaseKind.POSTGRES]])
            file_name = Path(backup).name
            logger.info(f"[Starting Database restore] - {file_name}")
            self.cluster.copy_backup_to_container(ContainerKind.POSTGRES, backup, file_name)
            try:
                exit_code = self.cluster.restore_pg_database(file_name, template_name)
            finally:
                self.cluster.delete_backup(ContainerKind.POSTGRES, file_name)
            if exit_code != 0:
                raise RestoreToolFailed(exit_code)
            logger.info(f"[Completed Database restore] - {template_name}")

        template_name = self.ensure_template(client, source_identity, restore_into)
        database = self.create_from_template(client, template_name, db_name, drop_if_exists)
        database.server_name = info.host
        return database

    def _restore_mssql_to_cluster(
        self,
        unzipped_directory: str,
        db_name: str,
        drop_if_exists: bool,
        info: ClusterConnectionInfo,
    ) -> DeploymentDatabase:
        backup = self.find_backup_file(unzipped_directory, [BACKUP_EXTENSION[DatabaseKind.MSSQL]])
        client = self.client_factory.create_mssql(info.host, info.db_port, info.db_username, info.db_password)
        self.prepare_target(client, db_name, drop_if_exists)

        staged_name = f"{db_name}.bak"
        staged_path = None
        use_filesystem = self.fs.file_size(backup) >= self.settings.large_file_threshold
        if use_filesystem:
            if not self.settings.cluster_mssql_data_path:
                raise ConfigurationError(
                    "Backup exceeds the container copy limit and "
                    "DEPLOY_CLUSTER_MSSQL_DATA_PATH is not set"
                )
            staged_path = Path(self.settings.cluster_mssql_data_path) / staged_name
            logger.warning(f"[Database restore] - Copying large file to {staged_path}")
            self.fs.copy_file(backup, staged_path)
        else:
            self.cluster.copy_backup_to_container(ContainerKind.MSSQL, backup, staged_name)

        try:
            client.restore_database(db_name, staged_name)
        finally:
            if staged_path is not None:
                self.fs.delete_file(staged_path)
            else:
                self.cluster.delete_backup(ContainerKind.MSSQL, staged_name)

        logger.info(f"[Database created] - {db_name}")
        return DeploymentDatabase(name=db_name, server_name=info.host)

    # ============================================
    # LOCAL SERVER BACKEND
    # ============================================

    def get_server_configuration(self, server_name: str) -> LocalDbServerConfiguration:
        config = self.settings.get_local_db_server(server_name)
        if config is None:
            available = ", ".join(self.settings.get_local_db_server_names()) or "(none configured)"
            raise ConfigurationError(
                f"Database server configuration '{server_name}' not found. "
                f"Available configurations: {available}"
            )
        return config

    def restore_to_local_server(
        self,
        unzipped_directory: str,
        db_name: str,
        server_name: str,
        source_identity: str,
        drop_if_exists: bool = False,
    ) -> DeploymentDatabase:
        logger.info(f"[Restoring database to local server] - Server: {server_name}, Database: {db_name}")
        config = self.get_server_configuration(server_name)
        server_kind = DatabaseKind.parse(config.db_type)

        backup = self.find_backup_file(unzipped_directory, BACKUP_EXTENSION.values())

        logger.info(f"Testing connection to {config.db_type} server at {config.hostname}:{config.port}...")
        result = self.connection_tester.test_connection(config)
        if not result.success:
            if result.detailed_error:
                logger.error(f"Details: {result.detailed_error}")
            if result.suggestion:
                logger.warning(f"Suggestion: {result.suggestion}")
            raise ConnectionTestFailed(f"Connection test failed: {result.error_message}")
        logger.info("Connection test successful")

        detected = self.backup_detector.detect_backup_type(backup)
        if detected is BackupFileType.UNKNOWN:
            raise DeploymentError(f"Cannot determine backup file type from {backup}")
        if detected is not _COMPATIBLE_BACKUP[server_kind]:
            raise DeploymentError(
                f"Backup file type {detected.value} is not compatible with database type {config.db_type}"
            )

        logger.info(f"Restoring {detected.value} backup to {config.db_type} server...")
        if server_kind is DatabaseKind.MSSQL:
            database = self._restore_mssql_to_local(config, backup, db_name, drop_if_exists)
        else:
            database = self._restore_postgres_to_local(config, backup, db_name, source_identity, drop_if_exists)
        database.server_name = server_name
        return database

    def _restore_postgres_to_local(
        self,
        config: LocalDbServerConfiguration,
        backup: str,
        db_name: str,
        source_identity: str,
        drop_if_exists: bool,
    ) -> DeploymentDatabase:
        pg_restore = self.pg_tools.get_pg_restore_path(config.pg_tools_path)
        if not pg_restore:
            raise ConfigurationError(
                "pg_restore not found. Please install PostgreSQL client tools "
                "(https://www.postgresql.org/download/)"
            )
        logger.info(f"Using pg_restore from: {pg_restore}")

        client = self.client_factory.create_postgres(config.hostname, config.port, config.username, config.password)

        def restore_into(template_name: str) -> None:
            logger.info(f"Starting restore from {backup}...")
            logger.info("This may take several minutes depending on database size.")
            exit_code = self.run_pg_restore(pg_restore, config, backup, template_name)
            if exit_code != 0:
                raise RestoreToolFailed(exit_code)

        template_name = self.ensure_template(client, source_identity, restore_into)
        return self.create_from_template(client, template_name, db_name, drop_if_exists)

    def run_pg_restore(self, pg_restore: str, config: LocalDbServerConfiguration, backup: str, db_name: str) -> int:
        def on_output(line: str, stream: ProcessOutputStream) -> None:
            if line:
                logger.debug(line)

        options = ProcessExecutionOptions(
            program=pg_restore,
            arguments=[
                "-h", config.hostname,
                "-p", str(config.port),
                "-U", config.username or "",
                "-d", db_name,
                "-v", backup,
                "--no-owner",
                "--no-privileges",
            ],
            environment={"PGPASSWORD": config.password or ""},
            on_output=on_output,
        )
        result = self.process_executor.execute_with_realtime_output(options)
        if not result.started:
            raise ProcessStartFailed(f"Could not start {pg_restore}: {result.standard_error}")
        return result.exit_code

    def _restore_mssql_to_local(
        self,
        config: LocalDbServerConfiguration,
        backup: str,
        db_name: str,
        drop_if_exists: bool,
    ) -> DeploymentDatabase:
        client = self.client_factory.create_mssql(
            config.hostname, config.port, config.username, config.password, config.use_windows_auth
        )
        self.prepare_target(client, db_name, drop_if_exists)

        data_path = client.get_data_path()
        logger.info(f"SQL Server data path: {data_path}")
        backup_name = Path(backup).name
        destination = Path(data_path) / backup_name
        self.fs.copy_file(backup, destination)
        logger.info(f"Copied backup file from {backup} to {destination}")

        logger.info("Starting database restore. SQL Server reports progress every 5%.")
        client.restore_database(db_name, backup_name)
        logger.info(f"Successfully restored database {db_name} from {backup}")
        return DeploymentDatabase(name=db_name)
