# deploy_engine/strategies/base.py
"""Deployment strategy interface."""

from abc import ABC, abstractmethod
from enum import Enum

from deploy_engine.core.models import DeploymentRequest


class StrategyKind(Enum):
    MANAGED_HOST = "MANAGED_HOST"
    SELF_HOSTED = "SELF_HOSTED"


class DeploymentStrategy(ABC):
    """Places a deployed tree under a host and starts it."""

    kind: StrategyKind

    @abstractmethod
    def deploy(self, source_path: str, request: DeploymentRequest) -> int:
        """Start the application from ``source_path``. Returns 0 on success."""
        pass

    @abstractmethod
    def get_application_url(self, request: DeploymentRequest) -> str:
        """Externally reachable base URL of the deployed application."""
        pass
