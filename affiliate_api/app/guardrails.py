import enum
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from .cache_keys import CACHE_PREFIX, Identifier, rate_limit_key
from .store import STORE_ERRORS, KeyValueStore

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"
LOCALHOST = "127.0.0.1"


class FailurePolicy(enum.Enum):
    """What to do when the shared store cannot be reached."""
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


@dataclass
class RateLimitConfig:
    action: str = "default"
    max_requests: int = 30
    window_seconds: int = 60


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after: Optional[int] = None


class FixedWindowRateLimiter:
    """
    Redis fixed-window counter, shared across processes.

    The first INCR in a window sets the key's expiry; the window resets when
    the key expires. Correctness under concurrency relies on INCR being atomic.
    """
    def __init__(
        self,
        store: Optional[KeyValueStore],
        cfg: RateLimitConfig,
        policy: FailurePolicy = FailurePolicy.FAIL_OPEN,
        prefix: str = CACHE_PREFIX,
    ):
        self.store = store
        self.cfg = cfg
        self.policy = policy
        self.prefix = prefix

    def key_for(self, identifier: str, resource_id: Identifier = None) -> str:
        if resource_id is None:
            return rate_limit_key(self.cfg.action, identifier, prefix=self.prefix)
        return rate_limit_key(self.cfg.action, identifier, resource_id, prefix=self.prefix)

    def _unavailable(self) -> RateLimitDecision:
        if self.policy is FailurePolicy.FAIL_CLOSED:
            return RateLimitDecision(allowed=False, retry_after=self.cfg.window_seconds)
        return RateLimitDecision(allowed=True)

    def check(self, identifier: str, resource_id: Identifier = None) -> RateLimitDecision:
        if self.store is None:
            return self._unavailable()

        key = self.key_for(identifier, resource_id)
        window = self.cfg.window_seconds
        try:
            count = int(self.store.incr(key))
            if count == 1:
                self.store.expire(key, window)
                ttl = window
            else:
                ttl = int(self.store.ttl(key))
                if ttl == -1:
                    # counter without expiry would never reset
                    logger.warning("rate limit key %s had no expiry; resetting window", key)
                    self.store.expire(key, window)
                    ttl = window
        except STORE_ERRORS as e:
            logger.warning("rate limit check failed action=%s: %s", self.cfg.action, e)
            return self._unavailable()

        logger.debug(
            "rate limit action=%s key=%s count=%s/%s", self.cfg.action, key, count, self.cfg.max_requests
        )
        if count > self.cfg.max_requests:
            retry_after = ttl if ttl > 0 else window
            logger.info("rate limit exceeded action=%s key=%s retry_after=%s", self.cfg.action, key, retry_after)
            return RateLimitDecision(allowed=False, retry_after=retry_after)
        return RateLimitDecision(allowed=True)

    def reset(self, identifier: str, resource_id: Identifier = None) -> bool:
        if self.store is None:
            return False
        try:
            self.store.delete(self.key_for(identifier, resource_id))
            return True
        except STORE_ERRORS as e:
            logger.warning("rate limit reset failed action=%s: %s", self.cfg.action, e)
            return False


def client_ip(headers: Mapping[str, str], client_host: Optional[str] = None) -> str:
    """
    Best-effort client address from proxy headers.
    Unknown clients all land in one bucket; that is never a reason to deny.
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    for header in ("cf-connecting-ip", "x-real-ip"):
        value = (headers.get(header) or "").strip()
        if value:
            return value

    host = headers.get("host") or ""
    if "localhost" in host or LOCALHOST in host:
        return LOCALHOST

    return client_host or UNKNOWN_CLIENT
