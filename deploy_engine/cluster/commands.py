# deploy_engine/cluster/commands.py
"""
Cluster command facade.

The shared database and cache servers run as containers on the cluster
host. Connection details are read from the containers themselves and
backup files are staged inside them before a restore.
"""

import logging
import tarfile
import tempfile
from enum import Enum
from pathlib import PurePosixPath
from typing import Dict

import docker
from docker.errors import NotFound

from deploy_engine.config import DeploySettings
from deploy_engine.core.errors import ConfigurationError, DeploymentError
from deploy_engine.core.models import ClusterConnectionInfo

logger = logging.getLogger(__name__)


class ContainerKind(Enum):
    POSTGRES = "postgres"
    MSSQL = "mssql"
    REDIS = "redis"


# Where staged backups land inside each container
BACKUP_DIRECTORIES = {
    ContainerKind.POSTGRES: "/tmp",
    ContainerKind.MSSQL: "/var/opt/mssql/data",
}

_INTERNAL_PORTS = {
    ContainerKind.POSTGRES: "5432/tcp",
    ContainerKind.MSSQL: "1433/tcp",
    ContainerKind.REDIS: "6379/tcp",
}


class ClusterCommands:
    """Docker SDK facade for the cluster's database and cache containers."""

    def __init__(self, settings: DeploySettings, client=None):
        self.settings = settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = docker.from_env()
            logger.info("[Cluster] - ✅ Connected to Docker daemon")
        return self._client

    # ============================================
    # CONNECTION DISCOVERY
    # ============================================

    def get_postgres_connection_info(self) -> ClusterConnectionInfo:
        container = self._container(ContainerKind.POSTGRES)
        env = self._environment(container)
        return ClusterConnectionInfo(
            host=self.settings.cluster_host,
            db_port=self._published_port(container, ContainerKind.POSTGRES),
            db_username=env.get("POSTGRES_USER", "postgres"),
            db_password=env.get("POSTGRES_PASSWORD", ""),
            redis_port=self._redis_port(),
        )

    def get_mssql_connection_info(self) -> ClusterConnectionInfo:
        container = self._container(ContainerKind.MSSQL)
        env = self._environment(container)
        return ClusterConnectionInfo(
            host=self.settings.cluster_host,
            db_port=self._published_port(container, ContainerKind.MSSQL),
            db_username="sa",
            db_password=env.get("MSSQL_SA_PASSWORD") or env.get("SA_PASSWORD", ""),
            redis_port=self._redis_port(),
        )

    # ============================================
    # FILE STAGING
    # ============================================

    def copy_backup_to_container(self, kind: ContainerKind, source_path: str, file_name: str) -> str:
        """Copy a local file into the container's backup directory; returns the in-container path."""
        container = self._container(kind)
        directory = BACKUP_DIRECTORIES[kind]

        with tempfile.TemporaryFile() as buffer:
            with tarfile.open(fileobj=buffer, mode="w") as archive:
                archive.add(source_path, arcname=file_name)
            buffer.seek(0)

            logger.info(f"[Cluster] - Copying {source_path} to {container.name}:{directory}/{file_name}")
            if not container.put_archive(directory, buffer):
                raise DeploymentError(f"Failed to copy {file_name} into container {container.name}")

        return str(PurePosixPath(directory) / file_name)

    def delete_backup(self, kind: ContainerKind, file_name: str) -> None:
        container = self._container(kind)
        path = str(PurePosixPath(BACKUP_DIRECTORIES[kind]) / file_name)
        result = container.exec_run(["rm", "-f", path])
        if result.exit_code != 0:
            logger.warning(f"[Cluster] - Could not delete {path}: exit code {result.exit_code}")

    # ============================================
    # RESTORE
    # ============================================

    def restore_pg_database(self, file_name: str, db_name: str) -> int:
        """Run pg_restore inside the postgres container. Returns its exit code."""
        container = self._container(ContainerKind.POSTGRES)
        env = self._environment(container)
        path = str(PurePosixPath(BACKUP_DIRECTORIES[ContainerKind.POSTGRES]) / file_name)

        command = [
            "pg_restore",
            "--username", env.get("POSTGRES_USER", "postgres"),
            "--dbname", db_name,
            "--no-owner",
            "--no-privileges",
            "--verbose",
            path,
        ]
        logger.info(f"[Cluster] - pg_restore {path} -> {db_name}")
        result = container.exec_run(command, environment={"PGPASSWORD": env.get("POSTGRES_PASSWORD", "")})

        output = (result.output or b"").decode("utf-8", errors="replace")
        for line in output.splitlines():
            logger.debug(line)

        return result.exit_code

    # ============================================
    # HELPERS
    # ============================================

    def _container_name(self, kind: ContainerKind) -> str:
        return {
            ContainerKind.POSTGRES: self.settings.cluster_postgres_container,
            ContainerKind.MSSQL: self.settings.cluster_mssql_container,
            ContainerKind.REDIS: self.settings.cluster_redis_container,
        }[kind]

    def _container(self, kind: ContainerKind):
        name = self._container_name(kind)
        try:
            return self.client.containers.get(name)
        except NotFound as e:
            raise ConfigurationError(
                f"Container '{name}' for {kind.value} was not found on {self.settings.cluster_host}"
            ) from e

    @staticmethod
    def _environment(container) -> Dict[str, str]:
        env = {}
        for item in container.attrs.get("Config", {}).get("Env") or []:
            key, _, value = item.partition("=")
            env[key] = value
        return env

    @staticmethod
    def _published_port(container, kind: ContainerKind) -> int:
        internal = _INTERNAL_PORTS[kind]
        bindings = (container.attrs.get("NetworkSettings", {}).get("Ports") or {}).get(internal)
        if not bindings:
            raise ConfigurationError(f"Container {container.name} does not publish port {internal}")
        return int(bindings[0]["HostPort"])

    def _redis_port(self) -> int:
        try:
            container = self._container(ContainerKind.REDIS)
        except ConfigurationError as e:
            logger.warning(f"[Cluster] - {e}; assuming redis port 6379")
            return 6379
        return self._published_port(container, ContainerKind.REDIS)
