# deploy_engine/registry/models.py
"""SQLAlchemy ORM models for the environment registry."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from deploy_engine.registry.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class EnvironmentORM(Base):
    """
    Environments table - one row per registered deployment.

    Name is unique; re-registering a name updates the row in place.
    """

    __tablename__ = "environments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True, index=True)

    # Access
    uri = Column(String(1024), nullable=False)
    login = Column(String(255), nullable=False, default="Supervisor")
    password = Column(String(255), nullable=False, default="Supervisor")

    # Runtime
    is_net_core = Column(Boolean, nullable=False, default=False)
    environment_path = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Environment(name={self.name}, uri={self.uri})>"
