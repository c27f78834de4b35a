"""Shared key-value store (Redis) client and the command subset the guardrails use."""
import logging
from typing import Optional, Protocol

import redis

from .settings import settings

logger = logging.getLogger(__name__)

# Errors that mean "store unreachable" rather than a bug in our code
STORE_ERRORS = (redis.RedisError, OSError)


class StoreUnavailableError(RuntimeError):
    """Raised only under FailurePolicy.FAIL_CLOSED when the store cannot be reached."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ex: Optional[int] = None) -> object: ...

    def incr(self, key: str) -> int: ...

    def expire(self, key: str, time: int) -> object: ...

    def ttl(self, key: str) -> int: ...

    def keys(self, pattern: str) -> list[str]: ...

    def delete(self, *keys: str) -> int: ...

    def ping(self) -> object: ...


_client: Optional[redis.Redis] = None


def get_store() -> Optional[redis.Redis]:
    """
    Return the process-wide Redis client, or None when REDIS_URL is not set.
    The client connects lazily on first command.
    """
    global _client
    if _client is not None:
        return _client
    if not settings.redis_url or not settings.redis_url.strip():
        logger.warning("REDIS_URL not set; caching and rate limiting are disabled")
        return None
    _client = redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
        health_check_interval=30,
    )
    return _client


def check_store_health(store: Optional[KeyValueStore]) -> bool:
    if store is None:
        return False
    try:
        return bool(store.ping())
    except STORE_ERRORS as e:
        logger.warning("store health check failed: %s", e)
        return False


def close_store() -> None:
    global _client
    if _client is None:
        return
    try:
        _client.close()
        logger.info("redis connection closed")
    except STORE_ERRORS as e:
        logger.warning("error closing redis connection: %s", e)
    finally:
        _client = None
