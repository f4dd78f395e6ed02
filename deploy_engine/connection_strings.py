# deploy_engine/connection_strings.py
"""Connection strings for the deployed application."""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional, Tuple

from deploy_engine.cache.redis_slots import RedisSlotAllocator
from deploy_engine.config import DeploySettings, LocalDbServerConfiguration
from deploy_engine.core.errors import ConfigurationError
from deploy_engine.core.models import ClusterConnectionInfo, DatabaseKind, DeploymentRequest

logger = logging.getLogger(__name__)

CONNECTION_STRINGS_FILE = "ConnectionStrings.config"


# ============================================
# BUILDERS
# ============================================

def postgres_connection_string(host: str, port: int, database: str, username: str, password: str) -> str:
    return (
        f"Server={host};Port={port};Database={database};User ID={username};password={password};"
        f"Timeout=500; CommandTimeout=400;MaxPoolSize=1024;"
    )


def mssql_connection_string(
    host: str,
    port: int,
    database: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    use_windows_auth: bool = False,
) -> str:
    # Named instances (host\instance) and port 0 mean "let the server resolve the port"
    data_source = host if "\\" in host or not port else f"{host},{port}"
    options = "MultipleActiveResultSets=true;Pooling=true;Max Pool Size=100"

    if use_windows_auth:
        return f"Data Source={data_source};Initial Catalog={database};Integrated Security=true;{options}"
    return f"Data Source={data_source};Initial Catalog={database};User Id={username}; Password={password};{options}"


def redis_connection_string(host: str, db: int, port: int) -> str:
    return f"host={host};db={db};port={port}"


def local_db_connection_string(config: LocalDbServerConfiguration, database: str) -> str:
    kind = DatabaseKind.parse(config.db_type)
    if kind is DatabaseKind.POSTGRES:
        return postgres_connection_string(config.hostname, config.port, database, config.username, config.password)
    return mssql_connection_string(
        config.hostname, config.port, database, config.username, config.password, config.use_windows_auth
    )


def cluster_db_connection_string(kind: DatabaseKind, info: ClusterConnectionInfo, database: str) -> str:
    if kind is DatabaseKind.POSTGRES:
        return postgres_connection_string(info.host, info.db_port, database, info.db_username, info.db_password)
    return mssql_connection_string(info.host, info.db_port, database, info.db_username, info.db_password)


# ============================================
# CONFIG FILE
# ============================================

def write_connection_strings(folder: str, db: str, redis: str) -> Path:
    """
    Set the ``db`` and ``redis`` entries of ConnectionStrings.config.

    Other entries in an existing file are kept.
    """
    path = Path(folder) / CONNECTION_STRINGS_FILE

    if path.is_file():
        tree = ET.parse(path)
        root = tree.getroot()
    else:
        root = ET.Element("connectionStrings")
        tree = ET.ElementTree(root)

    for name, value in (("db", db), ("redis", redis)):
        entry = next((e for e in root.findall("add") if e.get("name") == name), None)
        if entry is None:
            entry = ET.SubElement(root, "add", {"name": name})
        entry.set("connectionString", value)

    ET.indent(tree, space="  ")
    tree.write(path, encoding="utf-8", xml_declaration=True)
    return path


# ============================================
# CONFIGURATOR
# ============================================

class ConnectionStringConfigurator:
    """Builds the db/redis strings for a request and writes them to the deployment."""

    def __init__(self, settings: DeploySettings, redis_allocator: Optional[RedisSlotAllocator] = None):
        self.settings = settings
        self.redis_allocator = redis_allocator or RedisSlotAllocator()

    def choose_redis_db(self, request: DeploymentRequest, host: str, port: int) -> int:
        """User choice wins; otherwise the first empty slot, falling back to 0."""
        if request.redis_db is not None and request.redis_db >= 0:
            logger.info(f"[Redis Configuration] - Using user-specified database: {request.redis_db}")
            return request.redis_db

        slot, error = self.redis_allocator.find_empty_slot(host, port)
        if slot is None:
            logger.warning(f"[Redis Configuration] - {error}")
            logger.warning("[Redis Configuration] - Falling back to database 0; pass --redis-db to choose one")
            return 0

        logger.info(f"[Redis Configuration] - Auto-detected empty database: {slot}")
        return slot

    def build(
        self,
        request: DeploymentRequest,
        database_kind: DatabaseKind,
        cluster_info: Optional[ClusterConnectionInfo] = None,
    ) -> Tuple[str, str]:
        """Return (db connection string, redis connection string)."""
        if request.uses_local_db_server:
            logger.info(f"[Connection String Mode] - Local database server: {request.db_server_name}")
            config = self.settings.get_local_db_server(request.db_server_name)
            if config is None:
                raise ConfigurationError(
                    f"Database server configuration '{request.db_server_name}' not found"
                )
            db = local_db_connection_string(config, request.site_name)
            redis_host, redis_port = self.settings.local_redis_host, self.settings.local_redis_port
        else:
            logger.info("[Connection String Mode] - Cluster")
            if cluster_info is None:
                raise ConfigurationError("Cluster connection details were not resolved")
            db = cluster_db_connection_string(database_kind, cluster_info, request.site_name)
            redis_host, redis_port = cluster_info.host, cluster_info.redis_port

        redis_db = self.choose_redis_db(request, redis_host, redis_port)
        return db, redis_connection_string(redis_host, redis_db, redis_port)

    def configure(
        self,
        folder: str,
        request: DeploymentRequest,
        database_kind: DatabaseKind,
        cluster_info: Optional[ClusterConnectionInfo] = None,
    ) -> Path:
        db, redis = self.build(request, database_kind, cluster_info)
        path = write_connection_strings(folder, db, redis)
        logger.info(f"[Connection string] - Updated {path}")
        return path
