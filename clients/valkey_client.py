"""
Valkey (Redis-compatible) client for session lookup and job locks.

Simple wrapper around redis-py. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import json
import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        if client.acquire_lock("lock:monthly-billing", "worker-1", ttl_seconds=3600):
            try:
                ...
            finally:
                client.release_lock("lock:monthly-billing", "worker-1")
    """

    # Delete only if the caller still owns the lock
    _RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    def __init__(self, url: str):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def get_json(self, key: str) -> dict | list | None:
        """
        Get and deserialize JSON value.

        Returns None if key doesn't exist.
        Raises ValueError if value is not valid JSON.
        """
        value = self._client.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def acquire_lock(self, key: str, owner: str, ttl_seconds: int) -> bool:
        """
        Take a lock with SET NX EX.

        Returns True if acquired, False if another owner holds it. The TTL
        frees the lock if the holder dies without releasing.
        """
        return bool(self._client.set(key, owner, nx=True, ex=ttl_seconds))

    def release_lock(self, key: str, owner: str) -> bool:
        """Release a lock held by owner. Returns False if it was not ours."""
        return bool(self._client.eval(self._RELEASE_SCRIPT, 1, key, owner))

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
