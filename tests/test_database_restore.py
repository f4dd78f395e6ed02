#tests\test_database_restore.py

"""Test database restore: templates, targets, cluster and local backends."""

import logging
import threading

import pytest

from deploy_engine.cluster.commands import ContainerKind
from deploy_engine.core.errors import (
    BackupNotFound,
    ConfigurationError,
    ConnectionTestFailed,
    DeploymentError,
    ProcessStartFailed,
    RestoreToolFailed,
    TargetAlreadyExists,
)
from deploy_engine.core.models import BackupFileType, DatabaseKind
from deploy_engine.database.connection_tester import ConnectionTestResult
from deploy_engine.database.restore import DatabaseRestoreEngine, source_identity_for
from deploy_engine.database.templates import format_template_metadata

from tests.conftest import (
    FakeClientFactory,
    FakeCluster,
    FakeConnectionTester,
    FakeMssqlClient,
    FakePgTools,
    FakePostgresClient,
    FakeProcessExecutor,
    write_file,
)


PG_BACKUP = b"PGDMP\x01\x0e"
MSSQL_BACKUP = b"TAPE\x00\x00"


class UnknownDetector:
    def detect_backup_type(self, path):
        return BackupFileType.UNKNOWN


class UndroppablePostgresClient(FakePostgresClient):
    def drop_database(self, name):
        raise DeploymentError(f"database {name} is in use")


@pytest.fixture
def pg_tree(tmp_path):
    """Extracted build with a PostgreSQL backup in db/."""
    root = tmp_path / "build_42"
    write_file(root / "db" / "app.backup", PG_BACKUP)
    return root


@pytest.fixture
def mssql_tree(tmp_path):
    root = tmp_path / "build_ms"
    write_file(root / "db" / "app.bak", MSSQL_BACKUP)
    return root


def _engine(settings, cluster=None, factory=None, executor=None, tester=None, pg_tools=None):
    return DatabaseRestoreEngine(
        settings=settings,
        cluster=cluster or FakeCluster(),
        process_executor=executor or FakeProcessExecutor(),
        client_factory=factory or FakeClientFactory(),
        pg_tools=pg_tools or FakePgTools(),
        connection_tester=tester or FakeConnectionTester(),
    )


class TestSourceIdentity:
    """Test template key derivation."""

    def test_archive_stem(self, tmp_path):
        assert source_identity_for(str(tmp_path / "build_42.zip"), str(tmp_path / "x")) == "build_42"

    def test_directory_source(self, tmp_path):
        source = tmp_path / "build_dir"
        source.mkdir()
        assert source_identity_for(str(source), str(source)) == "build_dir"

    def test_without_archive(self, tmp_path):
        assert source_identity_for(None, str(tmp_path / "extracted")) == "extracted"


class TestTemplateResolution:
    """Test restore-once template reuse."""

    def test_first_deploy_restores_template(self, settings, pg_tree):
        """Test a missing template is created, restored, marked, and tagged."""
        factory = FakeClientFactory()
        cluster = FakeCluster()
        engine = _engine(settings, cluster=cluster, factory=factory)

        database = engine.restore_to_cluster(str(pg_tree), "site_a", DatabaseKind.POSTGRES, "build_42")

        pg = factory.postgres
        assert database.name == "site_a"
        assert database.template_name.startswith("template_")
        assert database.server_name == "cluster.local"
        assert pg.call_names() == [
            "create_database",
            "set_as_template",
            "set_comment",
            "create_database_from_template",
        ]
        assert "sourceFile:build_42|" in pg.databases[database.template_name]
        assert cluster.call_names() == [
            "get_postgres_connection_info", "copy", "restore", "delete",
        ]

    def test_second_deploy_reuses_template(self, settings, pg_tree):
        """Test the same source identity skips the restore."""
        factory = FakeClientFactory()
        cluster = FakeCluster()
        engine = _engine(settings, cluster=cluster, factory=factory)

        first = engine.restore_to_cluster(str(pg_tree), "site_a", DatabaseKind.POSTGRES, "build_42")
        second = engine.restore_to_cluster(str(pg_tree), "site_b", DatabaseKind.POSTGRES, "build_42")

        assert first.template_name == second.template_name
        assert cluster.call_names().count("restore") == 1
        assert "site_b" in factory.postgres.databases

    def test_existing_template_on_server_reused(self, settings, pg_tree):
        """Test a template created by an earlier process is found by comment."""
        pg = FakePostgresClient({"template_old": format_template_metadata("build_42")})
        cluster = FakeCluster()
        engine = _engine(settings, cluster=cluster, factory=FakeClientFactory(postgres=pg))

        database = engine.restore_to_cluster(str(pg_tree), "site_a", DatabaseKind.POSTGRES, "build_42")

        assert database.template_name == "template_old"
        assert "restore" not in cluster.call_names()

    def test_concurrent_ensure_template_restores_once(self, settings):
        """Test concurrent callers for one identity share a single restore."""
        engine = _engine(settings)
        pg = FakePostgresClient()
        restores = []
        barrier = threading.Barrier(4)
        results = []

        def restore_into(name):
            restores.append(name)

        def worker():
            barrier.wait()
            results.append(engine.ensure_template(pg, "build_42", restore_into))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(restores) == 1
        assert len(set(results)) == 1

    def test_failed_restore_leaves_no_tagged_template(self, settings, pg_tree):
        """Test a failed restore raises and never writes the metadata comment."""
        factory = FakeClientFactory()
        engine = _engine(settings, cluster=FakeCluster(restore_exit_code=1), factory=factory)

        with pytest.raises(RestoreToolFailed) as exc:
            engine.restore_to_cluster(str(pg_tree), "site_a", DatabaseKind.POSTGRES, "build_42")

        assert exc.value.exit_code == 1
        assert "set_comment" not in factory.postgres.call_names()

    def test_failed_restore_drops_unfinished_template(self, settings, pg_tree):
        """Test the empty template database is removed when the restore fails."""
        factory = FakeClientFactory()
        engine = _engine(settings, cluster=FakeCluster(restore_exit_code=1), factory=factory)

        with pytest.raises(RestoreToolFailed):
            engine.restore_to_cluster(str(pg_tree), "site_a", DatabaseKind.POSTGRES, "build_42")

        created = factory.postgres.calls[0][1]
        assert ("drop_database", created) in factory.postgres.calls
        assert created not in factory.postgres.databases

    def test_failed_drop_keeps_restore_error(self, settings, pg_tree, caplog):
        """Test a cleanup failure is logged and the restore error still propagates."""
        factory = FakeClientFactory(postgres=UndroppablePostgresClient())
        engine = _engine(settings, cluster=FakeCluster(restore_exit_code=1), factory=factory)

        with pytest.raises(RestoreToolFailed):
            engine.restore_to_cluster(str(pg_tree), "site_a", DatabaseKind.POSTGRES, "build_42")

        assert "Could not drop template" in caplog.text


class TestTargetDatabase:
    """Test target existence handling."""

    def test_existing_target_without_drop(self, settings, pg_tree):
        pg = FakePostgresClient({"site_a": None})
        engine = _engine(settings, factory=FakeClientFactory(postgres=pg))

        with pytest.raises(TargetAlreadyExists) as exc:
            engine.restore_to_cluster(str(pg_tree), "site_a", DatabaseKind.POSTGRES, "build_42")

        assert "--drop-if-exists" in str(exc.value)

    def test_existing_target_with_drop(self, settings, pg_tree):
        pg = FakePostgresClient({"site_a": None})
        engine = _engine(settings, factory=FakeClientFactory(postgres=pg))

        engine.restore_to_cluster(
            str(pg_tree), "site_a", DatabaseKind.POSTGRES, "build_42", drop_if_exists=True
        )

        names = pg.call_names()
        assert names.index("drop_database") < names.index("create_database_from_template")
        assert "site_a" in pg.databases


class TestBackupDiscovery:
    """Test backup lookup."""

    def test_db_directory_preferred(self, settings, tmp_path):
        write_file(tmp_path / "app.backup", PG_BACKUP)
        preferred = write_file(tmp_path / "db" / "inner.backup", PG_BACKUP)

        found = _engine(settings).find_backup_file(str(tmp_path), [".backup"])

        assert found == str(preferred)

    def test_missing_backup_logs_structure(self, settings, tmp_path, caplog):
        """Test the failure logs the directory contents before raising."""
        write_file(tmp_path / "bin" / "app.dll")
        write_file(tmp_path / "Web.config")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(BackupNotFound):
                _engine(settings).find_backup_file(str(tmp_path), [".backup"])

        assert "Directory structure: bin" in caplog.text
        assert "Web.config" in caplog.text


class TestClusterBackend:
    """Test cluster staging and cleanup."""

    def test_backup_deleted_when_restore_raises(self, settings, pg_tree):
        cluster = FakeCluster()

        def boom(file_name, db_name):
            raise DeploymentError("container gone")

        cluster.restore_pg_database = boom
        engine = _engine(settings, cluster=cluster)

        with pytest.raises(DeploymentError):
            engine.restore_to_cluster(str(pg_tree), "site_a", DatabaseKind.POSTGRES, "build_42")

        assert ("delete", ContainerKind.POSTGRES, "app.backup") in cluster.calls

    def test_mssql_small_backup_via_container(self, settings, mssql_tree):
        cluster = FakeCluster()
        factory = FakeClientFactory()
        engine = _engine(settings, cluster=cluster, factory=factory)

        database = engine.restore_to_cluster(str(mssql_tree), "site_ms", DatabaseKind.MSSQL, "build_ms")

        assert database.name == "site_ms"
        assert ("copy", ContainerKind.MSSQL, "site_ms.bak") in cluster.calls
        assert ("delete", ContainerKind.MSSQL, "site_ms.bak") in cluster.calls
        assert ("restore_database", "site_ms", "site_ms.bak") in factory.mssql.calls

    def test_mssql_large_backup_via_data_path(self, settings, mssql_tree, tmp_path):
        """Test files over the threshold go through the shared data path."""
        data_path = tmp_path / "mssql_data"
        data_path.mkdir()
        settings.large_file_threshold = 1
        settings.cluster_mssql_data_path = str(data_path)
        cluster = FakeCluster()
        factory = FakeClientFactory()
        engine = _engine(settings, cluster=cluster, factory=factory)

        engine.restore_to_cluster(str(mssql_tree), "site_ms", DatabaseKind.MSSQL, "build_ms")

        assert "copy" not in cluster.call_names()
        assert ("restore_database", "site_ms", "site_ms.bak") in factory.mssql.calls
        assert not (data_path / "site_ms.bak").exists()

    def test_mssql_large_backup_without_data_path(self, settings, mssql_tree):
        settings.large_file_threshold = 1
        settings.cluster_mssql_data_path = None

        with pytest.raises(ConfigurationError):
            _engine(settings).restore_to_cluster(str(mssql_tree), "site_ms", DatabaseKind.MSSQL, "build_ms")


class TestLocalBackend:
    """Test restore to a named local server."""

    def test_postgres_runs_pg_restore(self, settings, pg_tree):
        """Test pg_restore arguments and password environment."""
        executor = FakeProcessExecutor()
        factory = FakeClientFactory()
        engine = _engine(settings, factory=factory, executor=executor)

        database = engine.restore_to_local_server(str(pg_tree), "site_a", "LOCAL-PG", "build_42")

        options = executor.executed[0]
        assert options.program == "/usr/bin/pg_restore"
        assert options.arguments[:6] == ["-h", "localhost", "-p", "5432", "-U", "postgres"]
        assert options.arguments[-2:] == ["--no-owner", "--no-privileges"]
        assert options.arguments[options.arguments.index("-d") + 1] == database.template_name
        assert options.environment == {"PGPASSWORD": "secret"}
        assert database.server_name == "LOCAL-PG"

    def test_pg_restore_non_zero_exit(self, settings, pg_tree):
        engine = _engine(settings, executor=FakeProcessExecutor(exit_code=3))

        with pytest.raises(RestoreToolFailed) as exc:
            engine.restore_to_local_server(str(pg_tree), "site_a", "local-pg", "build_42")

        assert exc.value.exit_code == 3

    def test_pg_restore_not_started(self, settings, pg_tree):
        engine = _engine(settings, executor=FakeProcessExecutor(started=False, error_message="not found"))

        with pytest.raises(ProcessStartFailed):
            engine.restore_to_local_server(str(pg_tree), "site_a", "local-pg", "build_42")

    def test_pg_restore_missing(self, settings, pg_tree):
        engine = _engine(settings, pg_tools=FakePgTools(path=None))

        with pytest.raises(ConfigurationError):
            engine.restore_to_local_server(str(pg_tree), "site_a", "local-pg", "build_42")

    def test_unknown_server(self, settings, pg_tree):
        with pytest.raises(ConfigurationError) as exc:
            _engine(settings).restore_to_local_server(str(pg_tree), "site_a", "nope", "build_42")

        assert "local-pg" in str(exc.value)

    def test_connection_failure(self, settings, pg_tree):
        tester = FakeConnectionTester(ConnectionTestResult(success=False, error_message="refused"))

        with pytest.raises(ConnectionTestFailed):
            _engine(settings, tester=tester).restore_to_local_server(
                str(pg_tree), "site_a", "local-pg", "build_42"
            )

    def test_incompatible_backup(self, settings, mssql_tree):
        """Test an MSSQL backup is rejected by a PostgreSQL server."""
        with pytest.raises(DeploymentError) as exc:
            _engine(settings).restore_to_local_server(str(mssql_tree), "site_a", "local-pg", "build_ms")

        assert "not compatible" in str(exc.value)

    def test_unknown_backup_type(self, settings, tmp_path):
        write_file(tmp_path / "db" / "app.bak", b"????")
        engine = _engine(settings)
        engine.backup_detector = UnknownDetector()

        with pytest.raises(DeploymentError) as exc:
            engine.restore_to_local_server(str(tmp_path), "site_a", "local-ms", "x")

        assert "Cannot determine" in str(exc.value)

    def test_mssql_local_restore(self, settings, mssql_tree, tmp_path):
        data_path = tmp_path / "data"
        mssql = FakeMssqlClient(data_path=str(data_path))
        factory = FakeClientFactory(mssql=mssql)

        database = _engine(settings, factory=factory).restore_to_local_server(
            str(mssql_tree), "site_ms", "local-ms", "build_ms"
        )

        assert (data_path / "app.bak").is_file()
        assert ("restore_database", "site_ms", "app.bak") in mssql.calls
        assert database.server_name == "local-ms"
