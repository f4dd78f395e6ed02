#tests\conftest.py

"""Pytest configuration, fixtures, and fakes for external collaborators."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from deploy_engine.config import DeploySettings, LocalDbServerConfiguration
from deploy_engine.core.errors import DeploymentError
from deploy_engine.core.models import ClusterConnectionInfo, DeploymentDatabase
from deploy_engine.database.connection_tester import ConnectionTestResult
from deploy_engine.database.templates import find_template_name
from deploy_engine.process.models import ProcessExecutionResult, ProcessLaunchResult
from deploy_engine.registry.database import drop_db, get_session_factory, init_db
from deploy_engine.registry.repository import EnvironmentRepository
from deploy_engine.strategies.base import DeploymentStrategy, StrategyKind


# ============================================
# SETTINGS / REGISTRY
# ============================================

@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file."""
    return DeploySettings(
        _env_file=None,
        products_folder=str(tmp_path / "products"),
        managed_host_root_path=str(tmp_path / "iis"),
        db_servers={
            "local-pg": LocalDbServerConfiguration(
                db_type="postgres", hostname="localhost", port=5432,
                username="postgres", password="secret",
            ),
            "local-ms": LocalDbServerConfiguration(
                db_type="mssql", hostname="localhost", port=1433,
                username="sa", password="secret",
            ),
        },
        cluster_host="cluster.local",
        readiness_initial_delay=0,
        readiness_interval=0,
    )


@pytest.fixture
def registry_engine():
    """In-memory SQLite shared across sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    drop_db(engine)
    engine.dispose()


@pytest.fixture
def environment_repository(registry_engine):
    return EnvironmentRepository(session_factory=get_session_factory(registry_engine))


# ============================================
# DATABASE FAKES
# ============================================

class FakePostgresClient:
    """Keeps databases and their comments in memory."""

    def __init__(self, databases: Optional[Dict[str, Optional[str]]] = None):
        self.databases: Dict[str, Optional[str]] = dict(databases or {})
        self.templates = set()
        self.calls: List[tuple] = []

    def ping(self):
        self.calls.append(("ping",))

    def database_exists(self, name):
        return name in self.databases

    def create_database(self, name):
        self.calls.append(("create_database", name))
        if name in self.databases:
            raise DeploymentError(f"database {name} exists")
        self.databases[name] = None

    def create_database_from_template(self, template_name, name):
        self.calls.append(("create_database_from_template", template_name, name))
        if template_name not in self.databases:
            raise DeploymentError(f"template {template_name} missing")
        self.databases[name] = None

    def drop_database(self, name):
        self.calls.append(("drop_database", name))
        self.databases.pop(name, None)

    def set_as_template(self, name):
        self.calls.append(("set_as_template", name))
        self.templates.add(name)

    def set_comment(self, name, comment):
        self.calls.append(("set_comment", name, comment))
        self.databases[name] = comment

    def find_by_source_comment(self, source_identity):
        return find_template_name(self.databases.items(), source_identity)

    def call_names(self):
        return [c[0] for c in self.calls]


class FakeMssqlClient:
    def __init__(self, databases=None, data_path="/var/opt/mssql/data"):
        self.databases = set(databases or [])
        self.data_path = data_path
        self.calls: List[tuple] = []

    def ping(self):
        self.calls.append(("ping",))

    def database_exists(self, name):
        return name in self.databases

    def drop_database(self, name):
        self.calls.append(("drop_database", name))
        self.databases.discard(name)

    def get_data_path(self):
        return self.data_path

    def restore_database(self, name, backup_file_name):
        self.calls.append(("restore_database", name, backup_file_name))
        self.databases.add(name)


class FakeClientFactory:
    """Hands out the same client for every connection, like one shared server."""

    def __init__(self, postgres=None, mssql=None):
        self.postgres = postgres or FakePostgresClient()
        self.mssql = mssql or FakeMssqlClient()
        self.connections: List[tuple] = []

    def create_postgres(self, host, port, username, password):
        self.connections.append(("postgres", host, port))
        return self.postgres

    def create_mssql(self, host, port, username, password, use_windows_auth=False):
        self.connections.append(("mssql", host, port))
        return self.mssql


class FakeConnectionTester:
    def __init__(self, result=None):
        self.result = result or ConnectionTestResult(success=True)
        self.tested = []

    def test_connection(self, config):
        self.tested.append(config)
        return self.result


class FakePgTools:
    def __init__(self, path="/usr/bin/pg_restore"):
        self.path = path

    def get_pg_restore_path(self, configured_path=None):
        return self.path


# ============================================
# CLUSTER FAKE
# ============================================

class FakeCluster:
    def __init__(self, restore_exit_code=0, host="cluster.local"):
        self.restore_exit_code = restore_exit_code
        self.host = host
        self.calls: List[tuple] = []

    def get_postgres_connection_info(self):
        self.calls.append(("get_postgres_connection_info",))
        return ClusterConnectionInfo(self.host, 5432, "postgres", "pg-secret", 6379)

    def get_mssql_connection_info(self):
        self.calls.append(("get_mssql_connection_info",))
        return ClusterConnectionInfo(self.host, 1433, "sa", "ms-secret", 6379)

    def copy_backup_to_container(self, kind, source_path, file_name):
        self.calls.append(("copy", kind, file_name))
        return f"/tmp/{file_name}"

    def delete_backup(self, kind, file_name):
        self.calls.append(("delete", kind, file_name))

    def restore_pg_database(self, file_name, db_name):
        self.calls.append(("restore", file_name, db_name))
        return self.restore_exit_code

    def call_names(self):
        return [c[0] for c in self.calls]


# ============================================
# PROCESS FAKE
# ============================================

class FakeProcessExecutor:
    """Records options; returns a canned exit code or launch result."""

    def __init__(self, exit_code=0, started=True, error_message=None):
        self.exit_code = exit_code
        self.started = started
        self.error_message = error_message
        self.executed = []
        self.launched = []

    def _now(self):
        return datetime.now(timezone.utc)

    def execute_and_capture(self, options):
        self.executed.append(options)
        return ProcessExecutionResult(
            started=self.started,
            started_at=self._now(),
            finished_at=self._now(),
            process_id=4242 if self.started else None,
            exit_code=self.exit_code if self.started else None,
            standard_error="" if self.started else (self.error_message or "failed"),
        )

    def execute_with_realtime_output(self, options):
        return self.execute_and_capture(options)

    def fire_and_forget(self, options):
        self.launched.append(options)
        return ProcessLaunchResult(
            started=self.started,
            started_at=self._now(),
            process_id=4242 if self.started else None,
            error_message=None if self.started else (self.error_message or "failed"),
        )


# ============================================
# ORCHESTRATION FAKES
# ============================================

class FakeStrategy(DeploymentStrategy):
    def __init__(self, kind=StrategyKind.SELF_HOSTED, result=0):
        self.kind = kind
        self.result = result
        self.deployed = []

    def deploy(self, source_path, request):
        self.deployed.append(source_path)
        return self.result

    def get_application_url(self, request):
        return f"http://localhost:{request.site_port}"


class FakeSelector:
    def __init__(self, strategy):
        self.strategy = strategy
        self.requests = []

    def select(self, method_hint="auto", no_managed_host=False):
        self.requests.append((method_hint, no_managed_host))
        return self.strategy


class FakeRestoreEngine:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.local_calls = []
        self.cluster_calls = []

    def restore_to_local_server(self, unzipped_directory, db_name, server_name, source_identity, drop_if_exists=False):
        self.local_calls.append((unzipped_directory, db_name, server_name, source_identity, drop_if_exists))
        if self.error:
            raise self.error
        return DeploymentDatabase(name=db_name, server_name=server_name)

    def restore_to_cluster(self, unzipped_directory, db_name, database_kind, source_identity,
                           drop_if_exists=False, connection_info=None):
        self.cluster_calls.append((unzipped_directory, db_name, database_kind, source_identity, connection_info))
        if self.error:
            raise self.error
        return DeploymentDatabase(name=db_name, server_name=connection_info.host if connection_info else None)


class FakeReadiness:
    def __init__(self, ready=True):
        self.ready = ready
        self.waited = []

    def wait_until_ready(self, environment_name):
        self.waited.append(environment_name)
        return self.ready


class FakeBrowser:
    def __init__(self):
        self.opened = []

    def launch(self, url):
        self.opened.append(url)
        return 0


class FakePrompter:
    def __init__(self, site_name="prompted-site", port=8080):
        self.site_name = site_name
        self.port = port
        self.asked = []

    def ask_site_name(self, root_path):
        self.asked.append(("site_name", root_path))
        return self.site_name

    def ask_managed_host_port(self):
        self.asked.append(("managed_port",))
        return self.port

    def ask_self_hosted_port(self, default_port=8080):
        self.asked.append(("self_hosted_port", default_port))
        return self.port


class FakeRedisAllocator:
    def __init__(self, slot=3, error=None):
        self.slot = slot
        self.error = error
        self.scanned = []

    def find_empty_slot(self, host, port):
        self.scanned.append((host, port))
        if self.slot is None:
            return None, self.error or "no empty database"
        return self.slot, None


# ============================================
# FIXTURE HELPERS
# ============================================

def write_file(path: Path, content: bytes = b"") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture
def fake_process_executor():
    return FakeProcessExecutor()


@pytest.fixture
def fake_cluster():
    return FakeCluster()


@pytest.fixture
def fake_client_factory():
    return FakeClientFactory()
