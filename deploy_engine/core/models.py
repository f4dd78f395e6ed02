# deploy_engine/core/models.py
"""Core domain models for artifacts, deployment requests, and databases."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import total_ordering
from typing import Optional, Tuple


# ============================================
# ENUMS
# ============================================

class DatabaseKind(Enum):
    """Database engine family. Values match the artifact file-name token."""
    MSSQL = "MSSQL"
    POSTGRES = "PostgreSQL"

    @classmethod
    def parse(cls, value: str) -> "DatabaseKind":
        normalized = (value or "").strip().lower()
        if normalized in ("mssql", "sqlserver"):
            return cls.MSSQL
        if normalized in ("postgres", "postgresql", "pg"):
            return cls.POSTGRES
        from deploy_engine.core.errors import UnsupportedDatabaseKind
        raise UnsupportedDatabaseKind(value)


class RuntimePlatform(Enum):
    """Runtime the build was produced for."""
    NET_FRAMEWORK = "NETFramework"
    NET6 = "NET6"

    @property
    def suffix(self) -> str:
        """Suffix appended to the product name inside archive names."""
        return "Net6" if self is RuntimePlatform.NET6 else ""

    @classmethod
    def parse(cls, value: str) -> "RuntimePlatform":
        normalized = (value or "").strip().lower()
        if normalized in ("net6", "netcore", "net"):
            return cls.NET6
        return cls.NET_FRAMEWORK


class FrameworkType(Enum):
    """Framework detected from an extracted application tree."""
    NET_FRAMEWORK = "NET_FRAMEWORK"
    NET_CORE = "NET_CORE"


class BackupFileType(Enum):
    """Backup file engine family."""
    UNKNOWN = "UNKNOWN"
    POSTGRES_BACKUP = "POSTGRES_BACKUP"
    MSSQL_BACKUP = "MSSQL_BACKUP"


# ============================================
# VERSION
# ============================================

@total_ordering
@dataclass(frozen=True)
class Version:
    """
    Four-part version (major.minor.build.revision).

    Missing trailing parts are stored as -1 so that ``8.1.3`` sorts
    before ``8.1.3.0``.
    """
    major: int
    minor: int
    build: int = -1
    revision: int = -1

    @classmethod
    def parse(cls, text: str) -> Optional["Version"]:
        """Parse a directory name; return None when it is not a version."""
        parts = (text or "").strip().split(".")
        if not 2 <= len(parts) <= 4:
            return None
        numbers = []
        for part in parts:
            if not (part.isascii() and part.isdigit()):
                return None
            numbers.append(int(part))
        while len(numbers) < 4:
            numbers.append(-1)
        return cls(*numbers)

    def _key(self) -> Tuple[int, int, int, int]:
        return (self.major, self.minor, self.build, self.revision)

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        return ".".join(str(n) for n in self._key() if n >= 0)


# ============================================
# ARTIFACTS
# ============================================

@dataclass(frozen=True)
class BuildArtifact:
    """A resolved build archive. Never mutated after resolution."""
    product: str
    database_kind: DatabaseKind
    runtime_platform: RuntimePlatform
    version: Optional[Version]
    path: str


# ============================================
# DEPLOYMENT REQUEST
# ============================================

@dataclass
class DeploymentRequest:
    """
    Operator intent for a single deploy invocation.

    Site name and port may be filled in interactively before the
    pipeline starts; everything else is read-only afterwards.
    """
    site_name: str = ""
    site_port: int = 0

    # Source: explicit archive/directory or a product selector
    zip_file: Optional[str] = None
    product: Optional[str] = None
    database_kind: DatabaseKind = DatabaseKind.POSTGRES
    runtime_platform: RuntimePlatform = RuntimePlatform.NET_FRAMEWORK

    # Target database server (named local config or remote cluster)
    db_server_name: Optional[str] = None
    drop_if_exists: bool = False

    # Hosting
    deployment_method: str = "auto"
    no_managed_host: bool = False
    app_path: Optional[str] = None

    auto_run: bool = False
    redis_db: Optional[int] = None

    @property
    def uses_local_db_server(self) -> bool:
        return bool(self.db_server_name)


# ============================================
# DATABASES
# ============================================

@dataclass
class DatabaseTemplate:
    """Reusable restored database keyed by source identity."""
    name: str
    source_identity: str
    created_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = "1.0"


@dataclass
class DeploymentDatabase:
    """Per-deployment database cloned from a template."""
    name: str
    template_name: Optional[str] = None
    server_name: Optional[str] = None


@dataclass(frozen=True)
class ClusterConnectionInfo:
    """
    Connection parameters discovered from the remote cluster.

    ``host`` is resolved once and passed along explicitly to every
    stage that builds connection strings.
    """
    host: str
    db_port: int
    db_username: str
    db_password: str
    redis_port: int = 6379


# ============================================
# ENVIRONMENTS
# ============================================

@dataclass
class EnvironmentRecord:
    """A registered deployment, addressable by name from later commands."""
    name: str
    uri: str
    login: str = "Supervisor"
    password: str = "Supervisor"
    is_net_core: bool = False
    environment_path: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None
