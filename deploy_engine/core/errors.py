# deploy_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class DeploymentError(Exception):
    """Base class for all deployment engine errors."""
    pass


class ConfigurationError(DeploymentError):
    """Required setting missing or invalid."""
    pass


# -----------------------------
# Artifact Errors
# -----------------------------

class ArtifactNotFound(DeploymentError):
    """No build archive matched the requested product."""

    def __init__(self, token: str, root_path: str = ""):
        self.token = token
        self.root_path = root_path
        location = f" under {root_path}" if root_path else ""
        super().__init__(f"Build artifact matching '{token}' not found{location}")


class UnsupportedDatabaseKind(DeploymentError):
    """Database family is not one of the supported engines."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(
            f"Database type '{kind}' is not supported. Supported types: mssql, postgres"
        )


# -----------------------------
# Database Restore Errors
# -----------------------------

class BackupNotFound(DeploymentError):
    """Backup file missing from the extracted artifact."""
    pass


class TargetAlreadyExists(DeploymentError):
    """Target database exists and drop was not requested."""

    def __init__(self, db_name: str):
        self.db_name = db_name
        super().__init__(
            f"Database {db_name} already exists. "
            f"Use --drop-if-exists flag to automatically drop it."
        )


class RestoreToolFailed(DeploymentError):
    """External restore tool exited with a non-zero code."""

    def __init__(self, exit_code: int, tool: str = "pg_restore"):
        self.exit_code = exit_code
        self.tool = tool
        super().__init__(f"{tool} failed with exit code {exit_code}")


class ConnectionTestFailed(DeploymentError):
    pass


# -----------------------------
# Process / Host Errors
# -----------------------------

class ProcessStartFailed(DeploymentError):
    pass


class PortUnavailable(DeploymentError):
    """Warning-level: port already bound by another process."""

    def __init__(self, port: int):
        self.port = port
        super().__init__(f"Port {port} appears to be in use by another process")


class ReadinessTimeout(DeploymentError):
    """Warning-level: health probe never succeeded."""

    def __init__(self, environment_name: str):
        self.environment_name = environment_name
        super().__init__(f"Server {environment_name} did not become ready within the timeout period")


# -----------------------------
# Registry Errors
# -----------------------------

class RegistryError(DeploymentError):
    """Environment record could not be persisted."""
    pass
