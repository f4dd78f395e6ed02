# deploy_engine/strategies/selector.py
"""Choose the hosting strategy for a deployment."""

import logging

from deploy_engine.strategies.base import DeploymentStrategy, StrategyKind
from deploy_engine.strategies.managed_host import ManagedHostStrategy
from deploy_engine.strategies.self_hosted import SelfHostedStrategy

logger = logging.getLogger(__name__)

MANAGED_HOST_HINTS = {"iis", "managed", "managed-host"}
SELF_HOSTED_HINTS = {"dotnet", "self-hosted", "selfhosted"}


def select_strategy_kind(method_hint: str, no_managed_host: bool, managed_host_available: bool) -> StrategyKind:
    """
    Pure selection rule.

    The managed host is chosen only when it is available, not disabled,
    and the hint is ``auto`` or names it.
    """
    hint = (method_hint or "auto").strip().lower()

    if no_managed_host or not managed_host_available:
        return StrategyKind.SELF_HOSTED
    if hint in SELF_HOSTED_HINTS:
        return StrategyKind.SELF_HOSTED
    return StrategyKind.MANAGED_HOST


class DeploymentStrategySelector:
    def __init__(self, managed_host: ManagedHostStrategy, self_hosted: SelfHostedStrategy):
        self.managed_host = managed_host
        self.self_hosted = self_hosted

    def select(self, method_hint: str = "auto", no_managed_host: bool = False) -> DeploymentStrategy:
        hint = (method_hint or "auto").strip().lower()
        if hint not in MANAGED_HOST_HINTS | SELF_HOSTED_HINTS | {"auto"}:
            logger.warning(f"[Strategy] - Unknown deployment method '{method_hint}', using auto")

        available = self.managed_host.is_available()
        kind = select_strategy_kind(hint, no_managed_host, available)

        if hint in MANAGED_HOST_HINTS and kind is StrategyKind.SELF_HOSTED and not no_managed_host:
            logger.warning("[Strategy] - IIS is not available on this machine, using self-hosted deployment")

        return self.managed_host if kind is StrategyKind.MANAGED_HOST else self.self_hosted
