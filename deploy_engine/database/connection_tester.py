# deploy_engine/database/connection_tester.py
"""Pre-flight connectivity check for configured database servers."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from deploy_engine.config import LocalDbServerConfiguration
from deploy_engine.core.errors import UnsupportedDatabaseKind
from deploy_engine.core.models import DatabaseKind
from deploy_engine.database.clients import DatabaseClientFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    error_message: Optional[str] = None
    detailed_error: Optional[str] = None
    suggestion: Optional[str] = None


def _suggest(error_text: str, config: LocalDbServerConfiguration) -> str:
    lowered = error_text.lower()
    if "password authentication failed" in lowered or "login failed" in lowered:
        return f"Check the username and password configured for {config.hostname}"
    if "connection refused" in lowered or "could not connect" in lowered or "timeout" in lowered:
        return f"Make sure the server is running and listening on {config.hostname}:{config.port}"
    if "driver" in lowered or "odbc" in lowered:
        return "Install the SQL Server ODBC driver"
    return "Verify the server configuration in your settings"


class DbConnectionTester:
    """Opens a connection and runs SELECT 1."""

    def __init__(self, client_factory: Optional[DatabaseClientFactory] = None):
        self.client_factory = client_factory or DatabaseClientFactory()

    def test_connection(self, config: LocalDbServerConfiguration) -> ConnectionTestResult:
        try:
            kind = DatabaseKind.parse(config.db_type)
        except UnsupportedDatabaseKind as e:
            return ConnectionTestResult(success=False, error_message=str(e))

        try:
            if kind is DatabaseKind.POSTGRES:
                client = self.client_factory.create_postgres(
                    config.hostname, config.port, config.username, config.password
                )
            else:
                client = self.client_factory.create_mssql(
                    config.hostname, config.port, config.username, config.password,
                    config.use_windows_auth,
                )
            client.ping()
        except SQLAlchemyError as e:
            detail = str(getattr(e, "orig", None) or e)
            return ConnectionTestResult(
                success=False,
                error_message=f"Cannot connect to {config.db_type} server at {config.hostname}:{config.port}",
                detailed_error=detail,
                suggestion=_suggest(detail, config),
            )

        return ConnectionTestResult(success=True)
