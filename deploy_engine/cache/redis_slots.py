# deploy_engine/cache/redis_slots.py
"""Find an unused logical database on a shared Redis server."""

import logging
from typing import Callable, Optional, Tuple

import redis
from redis.exceptions import RedisError, ResponseError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_COUNT = 16


class RedisSlotAllocator:
    """
    Best-effort slot finder.

    Database 0 is never handed out. Nothing is reserved, so two
    deployments scanning at the same time can pick the same slot.
    """

    def __init__(self, client_factory: Callable[..., redis.Redis] = redis.Redis, socket_timeout: float = 5.0):
        self.client_factory = client_factory
        self.socket_timeout = socket_timeout

    def find_empty_slot(self, host: str, port: int) -> Tuple[Optional[int], Optional[str]]:
        """Return (slot, None) on success or (None, error message)."""
        try:
            with self.client_factory(
                host=host,
                port=port,
                db=0,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            ) as client:
                database_count = self._database_count(client)
                keyspace = client.info("keyspace")
        except RedisError as e:
            return None, f"Could not connect to Redis at {host}:{port}: {e}"

        for index in range(1, database_count):
            stats = keyspace.get(f"db{index}") or {}
            if int(stats.get("keys", 0)) == 0:
                logger.debug(f"[Redis] - Database {index} on {host}:{port} is empty")
                return index, None

        return None, (
            f"Could not find an empty Redis database on {host}:{port}. "
            f"All {database_count - 1} databases (1..{database_count - 1}) contain keys"
        )

    @staticmethod
    def _database_count(client: redis.Redis) -> int:
        try:
            value = client.config_get("databases").get("databases")
        except ResponseError as e:
            logger.warning(f"[Redis] - CONFIG GET unavailable ({e}), assuming {DEFAULT_DATABASE_COUNT} databases")
            return DEFAULT_DATABASE_COUNT
        return int(value) if value else DEFAULT_DATABASE_COUNT
