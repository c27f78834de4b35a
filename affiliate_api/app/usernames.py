"""Username availability rules and the old-username redirect map."""
import logging
import math
import re
import threading
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import repository
from .cache import CacheResult, RedisCache
from .cache_keys import CacheTTL, username_availability_key
from .db import now_ms

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[a-z0-9-]+$")
MIN_USERNAME_LENGTH = 3
RELEASE_AFTER_MONTHS = 6
MONTH_MS = 30 * 24 * 60 * 60 * 1000

RESERVED_USERNAMES = frozenset({
    "admin", "api", "www", "mail", "support", "help", "docs", "blog",
    "static", "assets", "cdn", "s", "auth", "login", "signup", "reset",
    "forgot", "verify", "dashboard", "settings", "profile",
})


def check_username_availability(username: str, current_user_id: Optional[int] = None) -> dict[str, Any]:
    if not USERNAME_RE.match(username):
        return {"available": False, "message": "Username can only contain lowercase letters, numbers, and hyphens"}
    if len(username) < MIN_USERNAME_LENGTH:
        return {"available": False, "message": f"Username must be at least {MIN_USERNAME_LENGTH} characters long"}
    if username.lower() in RESERVED_USERNAMES:
        return {"available": False, "message": "Username is reserved"}

    if repository.find_user_by_username(username):
        return {"available": False, "message": "Username is already taken"}

    history = repository.find_latest_username_history(username)
    if history is None:
        return {"available": True}

    if current_user_id is not None and history["user_id"] == current_user_id:
        return {"available": True, "isOwnOldUsername": True}

    months_since = (now_ms() - int(history["changed_at"])) / MONTH_MS
    if months_since < RELEASE_AFTER_MONTHS:
        remaining = math.ceil(RELEASE_AFTER_MONTHS - months_since)
        return {
            "available": False,
            "message": f"This username has been used before. It will be available in {remaining} month(s).",
        }
    return {"available": True}


def check_username_availability_cached(
    cache: RedisCache, username: str, user_id: Optional[int] = None
) -> CacheResult[dict[str, Any]]:
    return cache.get_or_compute(
        username_availability_key(username, user_id),
        lambda: check_username_availability(username, user_id),
        CacheTTL.USERNAME_AVAILABILITY,
    )


class UsernameRedirects:
    """
    In-process map of old username -> current username, loaded lazily from
    username_history. Lost on restart; rebuilt on first lookup.
    """
    def __init__(self):
        self._map: dict[str, str] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def _load(self) -> None:
        active = repository.list_active_usernames()
        mapping: dict[str, str] = {}
        for row in repository.list_username_history_with_current():
            old, new = row["old_username"], row["current_username"]
            # never shadow a name someone owns now
            if old not in active and new in active:
                mapping[old] = new
        self._map = mapping
        logger.info("username redirect map loaded entries=%s", len(mapping))

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            try:
                self._load()
            except SQLAlchemyError:
                # empty map; callers fall back to a plain 404
                logger.exception("failed to load username redirects")
            self._loaded = True

    def get(self, old_username: str) -> Optional[str]:
        self._ensure_loaded()
        return self._map.get(old_username)

    def update(self, old_username: str, new_username: Optional[str] = None) -> None:
        with self._lock:
            if new_username:
                self._map[old_username] = new_username
                # the new name is live again; it must not redirect to its previous owner
                self._map.pop(new_username, None)
            else:
                self._map.pop(old_username, None)

    def reload(self) -> None:
        with self._lock:
            self._map = {}
            self._loaded = False
        self._ensure_loaded()

    def stats(self) -> dict[str, Any]:
        return {"size": len(self._map), "initialized": self._loaded}
