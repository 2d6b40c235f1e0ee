"""Key-value storage for collected and enriched tweets.

This module provides the KVStore interface used by the collector, the
processor and the aggregator, with a Redis-backed implementation and an
in-memory one for local runs and tests. Values are JSON documents.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
import structlog
from redis.asyncio import Redis
from redis.exceptions import ConnectionError, TimeoutError


logger = structlog.get_logger(__name__)


class KVStore(ABC):
    """Minimal key-value capability: get, put, delete and list by prefix.

    Single-key operations are atomic; there are no multi-key transactions.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value stored at key, or None."""

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        """Store value (JSON-serializable) at key."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key if present."""

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """Return every key starting with prefix, sorted."""

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def close(self) -> None:
        """Release any underlying connections."""


class RedisKVStore(KVStore):
    """Redis-based key-value store.

    Attributes:
        redis_client: Async Redis client instance
        scan_count: Hint for the number of keys returned per SCAN round trip
    """

    def __init__(
        self,
        redis_host: str = "localhost",
        redis_port: int = 6379,
        redis_db: int = 0,
        redis_password: Optional[str] = None,
        max_connections: int = 20,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        scan_count: int = 500,
    ) -> None:
        """Initialize the Redis store.

        Args:
            redis_host: Redis server hostname
            redis_port: Redis server port
            redis_db: Redis database number
            redis_password: Optional Redis password
            max_connections: Maximum number of Redis connections
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Socket connection timeout in seconds
            scan_count: SCAN batch size used for prefix listing
        """
        self.redis_client: Redis = redis.Redis(
            host=redis_host,
            port=redis_port,
            db=redis_db,
            password=redis_password,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            decode_responses=True,
        )
        self.scan_count = scan_count

    async def close(self) -> None:
        """Close the Redis connection."""
        await self.redis_client.close()

    async def health_check(self) -> bool:
        """Check if Redis connection is healthy.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            await self.redis_client.ping()
            return True
        except (ConnectionError, TimeoutError) as e:
            logger.error("Redis health check failed", error=str(e))
            return False

    async def get(self, key: str) -> Optional[Any]:
        """Retrieve and decode the JSON document stored at key.

        Raises:
            ConnectionError: If Redis connection fails
        """
        try:
            cached_data = await self.redis_client.get(key)
        except (ConnectionError, TimeoutError) as e:
            logger.error("Failed to read key", key=key, error=str(e))
            raise

        if cached_data is None:
            return None

        try:
            return json.loads(cached_data)
        except json.JSONDecodeError as e:
            logger.error("Failed to decode stored value", key=key, error=str(e))
            return None

    async def put(self, key: str, value: Any) -> None:
        try:
            await self.redis_client.set(key, json.dumps(value))
        except (ConnectionError, TimeoutError) as e:
            logger.error("Failed to write key", key=key, error=str(e))
            raise

    async def delete(self, key: str) -> None:
        try:
            await self.redis_client.delete(key)
        except (ConnectionError, TimeoutError) as e:
            logger.error("Failed to delete key", key=key, error=str(e))
            raise

    async def list(self, prefix: str) -> List[str]:
        """List keys by prefix using SCAN so large keyspaces don't block Redis."""
        try:
            keys = [
                key async for key in self.redis_client.scan_iter(
                    match=f"{prefix}*", count=self.scan_count
                )
            ]
        except (ConnectionError, TimeoutError) as e:
            logger.error("Failed to list keys", prefix=prefix, error=str(e))
            raise

        return sorted(keys)


class InMemoryKVStore(KVStore):
    """Dictionary-backed store for local runs and tests.

    Values are stored as serialized JSON so callers get fresh copies, the
    same as with Redis.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    async def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list(self, prefix: str) -> List[str]:
        return sorted(key for key in self._data if key.startswith(prefix))

    def keys(self) -> List[str]:
        return sorted(self._data)
