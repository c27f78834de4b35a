"""
Cache key builders and TTLs.

Every key has the shape {prefix}:{domain}:{id...}. Callers go through the
named builders below instead of formatting strings themselves.
"""
from typing import Union

from .settings import settings

CACHE_PREFIX = settings.cache_prefix
ANONYMOUS = "anonymous"
DELIMITER = ":"

Identifier = Union[str, int, None]


class CacheDomain:
    USERNAME_AVAILABILITY = "username:availability"
    USERNAME_HISTORY = "username:history"
    SHORT_LINK = "shortlink"
    USER_PAGES = "user:pages"
    USER_DEFAULT_PAGE = "user:default-page"
    PAGE_DATA = "page"
    PAGE_BY_SLUG = "page:slug"
    RATE_LIMIT = "rate-limit"


class CacheTTL:
    """Seconds."""
    USERNAME_AVAILABILITY = 5 * 60
    SHORT_LINK = 60 * 60
    USER_PAGES = 10 * 60
    PAGE_DATA = 15 * 60
    PAGE_BY_SLUG = 15 * 60
    USERNAME_HISTORY = 24 * 60 * 60
    USER_DEFAULT_PAGE = 10 * 60


def build_key(domain: str, *identifiers: Identifier, prefix: str = CACHE_PREFIX) -> str:
    # None keeps anonymous and authenticated lookups apart
    parts = [prefix, domain]
    parts.extend(ANONYMOUS if ident is None else str(ident) for ident in identifiers)
    return DELIMITER.join(parts)


def username_availability_key(username: str, user_id: int | None = None) -> str:
    # user ids start at 1; 0 is treated as signed out
    return build_key(CacheDomain.USERNAME_AVAILABILITY, username, user_id or None)


def username_history_key(username: str) -> str:
    return build_key(CacheDomain.USERNAME_HISTORY, username)


def short_link_key(code: str) -> str:
    return build_key(CacheDomain.SHORT_LINK, code)


def user_pages_key(user_id: int) -> str:
    return build_key(CacheDomain.USER_PAGES, user_id)


def user_default_page_key(username: str) -> str:
    return build_key(CacheDomain.USER_DEFAULT_PAGE, username)


def page_data_key(page_id: int) -> str:
    return build_key(CacheDomain.PAGE_DATA, page_id)


def page_by_slug_key(slug: str) -> str:
    return build_key(CacheDomain.PAGE_BY_SLUG, slug)


def rate_limit_key(action: str, *identifiers: Identifier, prefix: str = CACHE_PREFIX) -> str:
    return build_key(CacheDomain.RATE_LIMIT, action, *identifiers, prefix=prefix)
