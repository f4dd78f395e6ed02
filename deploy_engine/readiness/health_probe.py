# deploy_engine/readiness/health_probe.py
"""HTTP health probe for registered environments."""

import logging

import requests

from deploy_engine.registry.repository import EnvironmentRepository

logger = logging.getLogger(__name__)


class HealthCheckProbe:
    """GET <environment uri><health path>; 2xx/3xx is healthy."""

    def __init__(
        self,
        registry: EnvironmentRepository,
        health_check_path: str = "/api/HealthCheck/Ping",
        timeout: float = 5,
        session=None,
    ):
        self.registry = registry
        self.health_check_path = health_check_path
        self.timeout = timeout
        self.session = session or requests.Session()

    def execute(self, environment_name: str) -> int:
        """Returns 0 when healthy, 1 otherwise."""
        environment = self.registry.get(environment_name)
        if environment is None:
            logger.error(f"[Health check] - Environment {environment_name} is not registered")
            return 1

        url = f"{environment.uri.rstrip('/')}{self.health_check_path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.debug(f"[Health check] - ❌ {url}: {e}")
            return 1

        if 200 <= response.status_code < 400:
            logger.info(f"[Health check] - ✅ {url} ({response.status_code})")
            return 0

        logger.debug(f"[Health check] - ❌ {url} returned {response.status_code}")
        return 1
