#tests\test_registry.py

"""Test the environment registry repository."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from deploy_engine.core.errors import RegistryError
from deploy_engine.core.models import EnvironmentRecord
from deploy_engine.registry.database import create_db_engine, get_session_factory
from deploy_engine.registry.repository import EnvironmentRepository


class TestEnvironmentRepository:
    """Test environment persistence."""

    def test_register_and_get(self, environment_repository):
        """Test a registered environment can be read back by name."""
        environment_repository.register(EnvironmentRecord(
            name="site_a",
            uri="http://localhost:8080",
            is_net_core=True,
            environment_path="/srv/site_a",
        ))

        record = environment_repository.get("site_a")

        assert record.uri == "http://localhost:8080"
        assert record.login == "Supervisor"
        assert record.password == "Supervisor"
        assert record.is_net_core is True
        assert record.environment_path == "/srv/site_a"
        assert record.updated_at is None

    def test_register_existing_updates(self, environment_repository):
        """Test re-registering a name updates instead of duplicating."""
        environment_repository.register(EnvironmentRecord(name="site_a", uri="http://localhost:8080"))
        environment_repository.register(EnvironmentRecord(name="site_a", uri="http://localhost:9090"))

        records = environment_repository.list_all()

        assert len(records) == 1
        assert records[0].uri == "http://localhost:9090"
        assert records[0].updated_at is not None

    def test_get_missing(self, environment_repository):
        assert environment_repository.get("nope") is None

    def test_list_all_sorted(self, environment_repository):
        for name in ("zeta", "alpha", "mid"):
            environment_repository.register(EnvironmentRecord(name=name, uri=f"http://{name}"))

        assert [r.name for r in environment_repository.list_all()] == ["alpha", "mid", "zeta"]

    def test_delete(self, environment_repository):
        environment_repository.register(EnvironmentRecord(name="site_a", uri="http://localhost:8080"))

        assert environment_repository.delete("site_a") is True
        assert environment_repository.delete("site_a") is False
        assert environment_repository.get("site_a") is None


class TestRegistryErrors:
    """Test storage failures surface as registry errors."""

    def test_unopenable_database(self, tmp_path):
        """Test a registry folder that cannot be created raises RegistryError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        url = f"sqlite:///{blocker / 'environments.db'}"
        repository = EnvironmentRepository(lambda: get_session_factory(create_db_engine(url))())

        with pytest.raises(RegistryError, match="Could not open the environment registry"):
            repository.get("site_a")

    def test_missing_table(self):
        """Test a query against an uninitialised database raises RegistryError."""
        engine = create_engine("sqlite://", poolclass=StaticPool)
        repository = EnvironmentRepository(get_session_factory(engine))

        with pytest.raises(RegistryError, match="Failed to list environments"):
            repository.list_all()
