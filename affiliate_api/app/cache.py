"""
Cache-or-compute over the shared store.

Values are stored as JSON with a TTL; expiry is left to the store. There is no
single-flight: concurrent misses on one key may each run compute().
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from .cache_keys import CACHE_PREFIX, CacheDomain, build_key
from .guardrails import FailurePolicy
from .store import STORE_ERRORS, KeyValueStore, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def escape_glob(value: str) -> str:
    """Escape KEYS pattern metacharacters so value only matches itself."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


@dataclass
class CacheResult(Generic[T]):
    data: Optional[T]
    from_cache: bool = False


class _StoreDown(Exception):
    pass


class RedisCache:
    def __init__(
        self,
        store: Optional[KeyValueStore],
        prefix: str = CACHE_PREFIX,
        policy: FailurePolicy = FailurePolicy.FAIL_OPEN,
    ):
        self.store = store
        self.prefix = prefix
        self.policy = policy

    def _require_store(self) -> KeyValueStore:
        if self.store is None:
            raise _StoreDown("store not configured")
        return self.store

    def _degrade(self, op: str, key: str, err: Exception) -> None:
        if self.policy is FailurePolicy.FAIL_CLOSED:
            raise StoreUnavailableError(f"cache {op} failed for {key}") from err
        if isinstance(err, _StoreDown):
            return
        logger.warning("cache %s failed key=%s: %s", op, key, err)

    @staticmethod
    def _decode(raw: str, adapter: Optional[TypeAdapter]) -> Any:
        if adapter is not None:
            return adapter.validate_json(raw)
        return json.loads(raw)

    @staticmethod
    def _encode(value: Any, adapter: Optional[TypeAdapter]) -> str:
        if adapter is not None:
            return adapter.dump_json(value).decode("utf-8")
        return json.dumps(value)

    def _read(self, key: str, adapter: Optional[TypeAdapter]) -> tuple[CacheResult, bool]:
        """Look key up; the flag is False when the store could not be reached."""
        try:
            raw = self._require_store().get(key)
        except (_StoreDown, *STORE_ERRORS) as e:
            self._degrade("get", key, e)
            return CacheResult(data=None), False

        if raw is None:
            return CacheResult(data=None), True
        try:
            return CacheResult(data=self._decode(raw, adapter), from_cache=True), True
        except (ValueError, ValidationError) as e:
            logger.warning("discarding unreadable cache entry key=%s: %s", key, e)
            return CacheResult(data=None), True

    def get(self, key: str, adapter: Optional[TypeAdapter] = None) -> CacheResult:
        return self._read(key, adapter)[0]

    def set(self, key: str, value: Any, ttl_seconds: int, adapter: Optional[TypeAdapter] = None) -> bool:
        payload = self._encode(value, adapter)
        try:
            self._require_store().set(key, payload, ex=ttl_seconds)
            return True
        except (_StoreDown, *STORE_ERRORS) as e:
            self._degrade("set", key, e)
            return False

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], T],
        ttl_seconds: int,
        adapter: Optional[TypeAdapter] = None,
    ) -> CacheResult[T]:
        """
        Return the cached value for key, or run compute() once, store the
        result for ttl_seconds and return it.

        compute() errors propagate and nothing is stored. None results are
        returned but not stored. If the store cannot be read, the result is
        computed and returned without a write attempt.
        """
        cached, reachable = self._read(key, adapter)
        if cached.from_cache:
            logger.debug("cache hit key=%s", key)
            return cached

        logger.debug("cache miss key=%s", key)
        data = compute()
        if data is not None and reachable:
            self.set(key, data, ttl_seconds, adapter)
        return CacheResult(data=data, from_cache=False)

    def delete(self, key: str) -> bool:
        try:
            self._require_store().delete(key)
            return True
        except (_StoreDown, *STORE_ERRORS) as e:
            self._degrade("delete", key, e)
            return False

    def delete_pattern(self, pattern: str) -> int:
        try:
            store = self._require_store()
            keys = store.keys(pattern)
            if not keys:
                return 0
            store.delete(*keys)
            return len(keys)
        except (_StoreDown, *STORE_ERRORS) as e:
            self._degrade("delete_pattern", pattern, e)
            return 0

    def _key(self, domain: str, *identifiers: Any) -> str:
        return build_key(domain, *identifiers, prefix=self.prefix)

    def invalidate_user(self, user_id: int) -> int:
        patterns = [
            self._key(CacheDomain.USER_PAGES, user_id),
            self._key(CacheDomain.PAGE_DATA, user_id, "*"),
        ]
        return sum(self.delete_pattern(p) for p in patterns)

    def invalidate_username(self, username: str) -> int:
        name = escape_glob(username)
        patterns = [
            self._key(CacheDomain.USERNAME_HISTORY, name),
            self._key(CacheDomain.USERNAME_AVAILABILITY, name, "*"),
            self._key(CacheDomain.USER_DEFAULT_PAGE, name),
        ]
        return sum(self.delete_pattern(p) for p in patterns)

    def invalidate_short_link(self, code: str) -> bool:
        return self.delete(self._key(CacheDomain.SHORT_LINK, code))

    def invalidate_page(self, page_id: int) -> bool:
        return self.delete(self._key(CacheDomain.PAGE_DATA, page_id))

    def invalidate_page_by_slug(self, slug: str) -> bool:
        return self.delete(self._key(CacheDomain.PAGE_BY_SLUG, slug))

    def clear_all(self) -> int:
        deleted = self.delete_pattern(f"{self.prefix}:*")
        logger.info("cache cleared prefix=%s deleted=%s", self.prefix, deleted)
        return deleted
