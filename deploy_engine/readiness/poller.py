# deploy_engine/readiness/poller.py
"""Bounded readiness polling after startup."""

import logging
import time
from typing import Callable

from deploy_engine.readiness.health_probe import HealthCheckProbe

logger = logging.getLogger(__name__)


class ReadinessPoller:
    """
    Waits for a freshly started environment to answer its health probe.

    Policy: sleep ``initial_delay``, then probe up to ``max_attempts``
    times with ``interval`` seconds between attempts. Exhausting the
    attempts is reported, not raised.
    """

    def __init__(
        self,
        probe: HealthCheckProbe,
        initial_delay: float = 15,
        max_attempts: int = 10,
        interval: float = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.probe = probe
        self.initial_delay = initial_delay
        self.max_attempts = max_attempts
        self.interval = interval
        self._sleep = sleep

    def wait_until_ready(self, environment_name: str) -> bool:
        logger.info(f"Waiting {self.initial_delay:g} seconds for server to start...")
        self._sleep(self.initial_delay)

        for attempt in range(1, self.max_attempts + 1):
            if self.probe.execute(environment_name) == 0:
                logger.info(f"Server is ready after {attempt} attempt(s).")
                return True

            if attempt < self.max_attempts:
                logger.info(
                    f"Waiting for server to become ready... ({attempt}/{self.max_attempts}). "
                    f"Next check in {self.interval:g} seconds."
                )
                self._sleep(self.interval)

        total = self.initial_delay + self.max_attempts * self.interval
        logger.warning(f"Server did not become ready after {total:g} seconds.")
        return False
