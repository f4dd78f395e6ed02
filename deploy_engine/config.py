# deploy_engine/config.py
"""Deployment engine configuration from environment variables."""

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


_HOME_FOLDER = Path.home() / "deploy_engine"


class LocalDbServerConfiguration(BaseModel):
    """Connection details for a named local database server."""

    db_type: str
    hostname: str = "localhost"
    port: int = 0
    username: Optional[str] = None
    password: Optional[str] = None
    use_windows_auth: bool = False
    pg_tools_path: Optional[str] = None


class DeploySettings(BaseSettings):
    """Deployment settings, prefixed with DEPLOY_ in the environment."""

    model_config = SettingsConfigDict(
        env_prefix="DEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    # Artifacts
    remote_artifact_server_path: Optional[str] = None
    products_folder: str = str(_HOME_FOLDER / "products")

    # Hosting
    managed_host_root_path: Optional[str] = None
    default_site_port: int = 8080

    # Named local database servers: {"name": {"db_type": "postgres", ...}}
    db_servers: Dict[str, LocalDbServerConfiguration] = {}

    # Remote cluster
    cluster_host: str = "localhost"
    cluster_postgres_container: str = "postgres"
    cluster_mssql_container: str = "mssql"
    cluster_redis_container: str = "redis"
    cluster_mssql_data_path: Optional[str] = None
    large_file_threshold: int = 2**31 - 1

    # Local cache server
    local_redis_host: str = "localhost"
    local_redis_port: int = 6379

    # Readiness
    readiness_initial_delay: float = 15
    readiness_max_attempts: int = 10
    readiness_interval: float = 3
    health_check_path: str = "/api/HealthCheck/Ping"
    health_check_timeout: float = 5

    # Environment registry
    registry_database_url: str = f"sqlite:///{_HOME_FOLDER / 'environments.db'}"
    default_login: str = "Supervisor"
    default_password: str = "Supervisor"

    log_level: str = "INFO"

    def get_local_db_server(self, name: str) -> Optional[LocalDbServerConfiguration]:
        """Find a named server, case-insensitively."""
        if not name:
            return None
        for server_name, config in self.db_servers.items():
            if server_name.lower() == name.lower():
                return config
        return None

    def get_local_db_server_names(self) -> List[str]:
        return list(self.db_servers.keys())


settings = DeploySettings()
