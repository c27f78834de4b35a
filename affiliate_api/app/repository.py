"""SQL queries behind the public endpoints. Rows come back as plain dicts so they can be cached as JSON."""
from typing import Any, Optional

from sqlalchemy import text

from .db import engine, now_ms


def _first(sql, params: dict) -> Optional[dict[str, Any]]:
    with engine.begin() as conn:
        row = conn.execute(sql, params).mappings().first()
    return dict(row) if row else None


def find_user_by_username(username: str) -> Optional[dict[str, Any]]:
    return _first(
        text("SELECT id, name, username, image FROM users WHERE username = :username"),
        {"username": username},
    )


def find_latest_username_history(old_username: str) -> Optional[dict[str, Any]]:
    return _first(
        text("""
        SELECT user_id, changed_at
        FROM username_history
        WHERE old_username = :old_username
        ORDER BY changed_at DESC
        LIMIT 1
        """),
        {"old_username": old_username},
    )


def list_username_history_with_current() -> list[dict[str, Any]]:
    sql = text("""
    SELECT h.old_username, u.username AS current_username
    FROM username_history h
    JOIN users u ON u.id = h.user_id
    ORDER BY h.changed_at ASC
    """)
    with engine.begin() as conn:
        return [dict(r) for r in conn.execute(sql).mappings().all()]


def list_active_usernames() -> set[str]:
    with engine.begin() as conn:
        return {r[0] for r in conn.execute(text("SELECT username FROM users")).all()}


def list_user_pages(user_id: int) -> list[dict[str, Any]]:
    sql = text("""
    SELECT id, title, description, slug, created_at, updated_at
    FROM page
    WHERE user_id = :user_id
    ORDER BY updated_at DESC
    """)
    with engine.begin() as conn:
        return [dict(r) for r in conn.execute(sql, {"user_id": user_id}).mappings().all()]


def get_short_link_by_code(code: str) -> Optional[dict[str, Any]]:
    return _first(
        text("""
        SELECT id, short_code, target_url, page_id, user_id, expires_at
        FROM short_link
        WHERE short_code = :code
          AND (expires_at IS NULL OR expires_at > :now)
        """),
        {"code": code, "now": now_ms()},
    )


def track_short_link_click(short_link_id: int, referrer: Optional[str] = None, user_agent: Optional[str] = None) -> None:
    ts = now_ms()
    with engine.begin() as conn:
        conn.execute(
            text("UPDATE short_link SET click_count = click_count + 1 WHERE id = :id"),
            {"id": short_link_id},
        )
        conn.execute(
            text("""
            INSERT INTO link_click_history (short_link_id, clicked_at, referrer, user_agent)
            VALUES (:short_link_id, :clicked_at, :referrer, :user_agent)
            """),
            {"short_link_id": short_link_id, "clicked_at": ts, "referrer": referrer, "user_agent": user_agent},
        )


def track_link_click(link_id: int, referrer: Optional[str] = None, user_agent: Optional[str] = None) -> bool:
    """Increment the click counter. Returns False when the link does not exist."""
    ts = now_ms()
    with engine.begin() as conn:
        result = conn.execute(
            text("UPDATE link SET click_count = click_count + 1, updated_at = :ts WHERE id = :id"),
            {"id": link_id, "ts": ts},
        )
        if result.rowcount == 0:
            return False
        conn.execute(
            text("""
            INSERT INTO link_click_history (link_id, clicked_at, referrer, user_agent)
            VALUES (:link_id, :clicked_at, :referrer, :user_agent)
            """),
            {"link_id": link_id, "clicked_at": ts, "referrer": referrer, "user_agent": user_agent},
        )
    return True


def get_link(link_id: int) -> Optional[dict[str, Any]]:
    return _first(
        text("""
        SELECT l.id, l.title, l.url, l.page_id, p.user_id AS owner_id
        FROM link l
        JOIN page p ON p.id = l.page_id
        WHERE l.id = :id
        """),
        {"id": link_id},
    )


def create_link_report(
    link_id: int,
    reporter_name: str,
    reporter_email: str,
    reason: str,
    description: Optional[str],
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> int:
    ts = now_ms()
    sql = text("""
    INSERT INTO link_report (
      link_id, reporter_name, reporter_email, reason, description,
      status, ip_address, user_agent, created_at, updated_at
    )
    VALUES (
      :link_id, :reporter_name, :reporter_email, :reason, :description,
      'pending', :ip_address, :user_agent, :ts, :ts
    )
    RETURNING id
    """)
    with engine.begin() as conn:
        return int(conn.execute(sql, {
            "link_id": link_id,
            "reporter_name": reporter_name,
            "reporter_email": reporter_email,
            "reason": reason,
            "description": description,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "ts": ts,
        }).scalar_one())


def update_link_health(link_id: int, status: str, status_code: Optional[int], response_time: int, error: Optional[str]) -> None:
    ts = now_ms()
    with engine.begin() as conn:
        conn.execute(
            text("""
            UPDATE link
            SET health_status = :status,
                status_code = :status_code,
                response_time = :response_time,
                error_message = :error,
                last_checked_at = :ts,
                updated_at = :ts
            WHERE id = :id
            """),
            {
                "id": link_id,
                "status": status,
                "status_code": status_code,
                "response_time": response_time,
                "error": error,
                "ts": ts,
            },
        )
