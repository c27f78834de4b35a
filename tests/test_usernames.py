import os
import unittest
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite://")

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from affiliate_api.app import repository
from affiliate_api.app.cache import RedisCache
from affiliate_api.app.db import now_ms, run_migrations
from affiliate_api.app.usernames import (
    MONTH_MS,
    UsernameRedirects,
    check_username_availability,
    check_username_availability_cached,
)
from tests.fake_store import FakeStore


def make_engine():
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    run_migrations(engine)
    with engine.begin() as conn:
        conn.execute(text("""
        INSERT INTO users (id, username, name) VALUES
          (1, 'taken', 'Taken'),
          (2, 'renamed', 'Renamed'),
          (3, 'stale-new', 'Stale'),
          (4, 'reclaimed', 'Reclaimer')
        """))
        conn.execute(text("""
        INSERT INTO username_history (user_id, old_username, changed_at) VALUES
          (2, 'recent-old', :recent),
          (3, 'stale-old', :stale),
          (1, 'reclaimed', :recent)
        """), {"recent": now_ms() - MONTH_MS, "stale": now_ms() - 7 * MONTH_MS})
    return engine


class UsernameAvailabilityTests(unittest.TestCase):
    def setUp(self):
        patcher = patch.object(repository, "engine", make_engine())
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_format_rules(self):
        self.assertFalse(check_username_availability("Alice")["available"])
        self.assertFalse(check_username_availability("al")["available"])
        self.assertEqual(check_username_availability("admin")["message"], "Username is reserved")

    def test_taken(self):
        self.assertEqual(
            check_username_availability("taken"),
            {"available": False, "message": "Username is already taken"},
        )

    def test_fresh_name_available(self):
        self.assertEqual(check_username_availability("brand-new"), {"available": True})

    def test_recently_released_name_is_held(self):
        result = check_username_availability("recent-old", 99)
        self.assertFalse(result["available"])
        self.assertIn("5 month(s)", result["message"])

    def test_former_owner_can_take_it_back(self):
        self.assertEqual(
            check_username_availability("recent-old", 2),
            {"available": True, "isOwnOldUsername": True},
        )

    def test_name_released_after_six_months(self):
        self.assertEqual(check_username_availability("stale-old", 99), {"available": True})


class CachedAvailabilityTests(unittest.TestCase):
    def test_second_call_served_from_cache(self):
        store = FakeStore()
        cache = RedisCache(store)
        with patch.object(repository, "find_user_by_username", return_value=None) as find_user, \
                patch.object(repository, "find_latest_username_history", return_value=None):
            first = check_username_availability_cached(cache, "alice", 42)
            second = check_username_availability_cached(cache, "alice", 42)

        key = "affiliate-links:username:availability:alice:42"
        self.assertEqual(store.ttl(key), 300)
        self.assertFalse(first.from_cache)
        self.assertTrue(second.from_cache)
        self.assertEqual(first.data, second.data)
        self.assertEqual(find_user.call_count, 1)

    def test_anonymous_and_user_lookups_are_cached_apart(self):
        store = FakeStore()
        cache = RedisCache(store)
        with patch.object(repository, "find_user_by_username", return_value=None), \
                patch.object(repository, "find_latest_username_history", return_value=None):
            check_username_availability_cached(cache, "alice")
            check_username_availability_cached(cache, "alice", 42)
        self.assertIn("affiliate-links:username:availability:alice:anonymous", store.data)
        self.assertIn("affiliate-links:username:availability:alice:42", store.data)


class UsernameRedirectTests(unittest.TestCase):
    def setUp(self):
        patcher = patch.object(repository, "engine", make_engine())
        patcher.start()
        self.addCleanup(patcher.stop)
        self.redirects = UsernameRedirects()

    def test_lazy_load(self):
        self.assertEqual(self.redirects.stats(), {"size": 0, "initialized": False})
        self.assertEqual(self.redirects.get("recent-old"), "renamed")
        self.assertEqual(self.redirects.get("stale-old"), "stale-new")
        self.assertTrue(self.redirects.stats()["initialized"])

    def test_active_name_never_redirects(self):
        self.assertIsNone(self.redirects.get("reclaimed"))

    def test_update(self):
        self.redirects.get("x")
        self.redirects.update("renamed", "renamed-again")
        self.assertEqual(self.redirects.get("renamed"), "renamed-again")
        self.redirects.update("newest", "recent-old")
        self.assertIsNone(self.redirects.get("recent-old"))
        self.redirects.update("newest")
        self.assertIsNone(self.redirects.get("newest"))


if __name__ == "__main__":
    unittest.main()
