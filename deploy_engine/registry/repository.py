# deploy_engine/registry/repository.py
"""Environment registry repository."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from deploy_engine.core.errors import RegistryError
from deploy_engine.core.models import EnvironmentRecord
from deploy_engine.registry.database import get_session_factory
from deploy_engine.registry.models import EnvironmentORM

logger = logging.getLogger(__name__)


# ============================================
# MAPPING FUNCTIONS
# ============================================

def environment_to_domain(orm: EnvironmentORM) -> EnvironmentRecord:
    return EnvironmentRecord(
        name=orm.name,
        uri=orm.uri,
        login=orm.login,
        password=orm.password,
        is_net_core=orm.is_net_core,
        environment_path=orm.environment_path,
        created_at=orm.created_at,
        updated_at=orm.updated_at,
    )


# ============================================
# ENVIRONMENT REPOSITORY
# ============================================

class EnvironmentRepository:
    """Persists named environments so later commands can address them."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def _get_session(self):
        try:
            if self._session_factory is None:
                self._session_factory = get_session_factory()
            return self._session_factory()
        except (OSError, SQLAlchemyError) as e:
            raise RegistryError(f"Could not open the environment registry: {e}") from e

    def register(self, record: EnvironmentRecord) -> EnvironmentRecord:
        """Insert or update by name."""
        session = self._get_session()
        try:
            orm = session.query(EnvironmentORM).filter(EnvironmentORM.name == record.name).one_or_none()
            if orm is None:
                orm = EnvironmentORM(name=record.name, created_at=record.created_at)
                session.add(orm)
            else:
                orm.updated_at = datetime.now(timezone.utc)

            orm.uri = record.uri
            orm.login = record.login
            orm.password = record.password
            orm.is_net_core = record.is_net_core
            orm.environment_path = record.environment_path

            session.commit()
            logger.info(f"[Registry] - Environment {record.name} registered at {record.uri}")
            return environment_to_domain(orm)
        except SQLAlchemyError as e:
            session.rollback()
            raise RegistryError(f"Failed to register environment {record.name}: {e}") from e
        finally:
            session.close()

    def get(self, name: str) -> Optional[EnvironmentRecord]:
        session = self._get_session()
        try:
            orm = session.query(EnvironmentORM).filter(EnvironmentORM.name == name).one_or_none()
            return environment_to_domain(orm) if orm else None
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to look up environment {name}: {e}") from e
        finally:
            session.close()

    def list_all(self) -> List[EnvironmentRecord]:
        session = self._get_session()
        try:
            return [environment_to_domain(o) for o in session.query(EnvironmentORM).order_by(EnvironmentORM.name)]
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to list environments: {e}") from e
        finally:
            session.close()

    def delete(self, name: str) -> bool:
        """Remove an environment. Returns False when it was not registered."""
        session = self._get_session()
        try:
            deleted = session.query(EnvironmentORM).filter(EnvironmentORM.name == name).delete()
            session.commit()
            return deleted > 0
        except SQLAlchemyError as e:
            session.rollback()
            raise RegistryError(f"Failed to delete environment {name}: {e}") from e
        finally:
            session.close()
