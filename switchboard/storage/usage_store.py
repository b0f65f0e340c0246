"""
Usage store: per-user monthly token counters.

usage_stats table: (tenant_id, user_key, year_month, total_tokens, updated_at)
The increment is one INSERT ... ON CONFLICT DO UPDATE statement so concurrent
requests for the same user add up without any in-process locking.
"""

from __future__ import annotations

import time

from switchboard.storage.db import apply_sqlite_pragmas, connect, ensure_sqlite_dir, is_postgres, sql


def init_usage_db() -> None:
    ensure_sqlite_dir()
    big = "BIGINT" if is_postgres() else "INTEGER"
    with connect() as conn:
        apply_sqlite_pragmas(conn)
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS usage_stats (
                tenant_id TEXT NOT NULL,
                user_key TEXT NOT NULL,
                year_month TEXT NOT NULL,
                total_tokens {big} NOT NULL DEFAULT 0,
                updated_at {big} NOT NULL,
                PRIMARY KEY (tenant_id, user_key, year_month)
            )
            """
        )
        conn.commit()


def get_usage(tenant_id: str, user_key: str, year_month: str) -> int:
    init_usage_db()
    with connect() as conn:
        row = conn.execute(
            sql("SELECT total_tokens FROM usage_stats WHERE tenant_id = ? AND user_key = ? AND year_month = ?"),
            (tenant_id, user_key, year_month),
        ).fetchone()
    return int(row["total_tokens"]) if row is not None else 0


def increment_usage(tenant_id: str, user_key: str, year_month: str, tokens: int) -> None:
    """Atomically add `tokens` to the user's counter for the period."""
    init_usage_db()
    with connect() as conn:
        conn.execute(
            sql(
                """
                INSERT INTO usage_stats (tenant_id, user_key, year_month, total_tokens, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (tenant_id, user_key, year_month) DO UPDATE SET
                    total_tokens = usage_stats.total_tokens + excluded.total_tokens,
                    updated_at = excluded.updated_at
                """
            ),
            (tenant_id, user_key, year_month, int(tokens), time.time_ns()),
        )
        conn.commit()
