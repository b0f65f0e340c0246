"""
Memory store: short notes a user asked the assistant to remember.

memories table: (id, tenant_id, created_by, entity_name, entity_key, entity_type, content, created_at)
Notes are private to the user who saved them. `entity_key` is the casefolded
name so lookups are case-insensitive on both dialects.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Dict, List

from switchboard.storage.db import apply_sqlite_pragmas, connect, ensure_sqlite_dir, is_postgres, sql

MAX_NOTE_CHARS = 500
RECALL_LIMIT = 5
ENTITY_TYPES = ("customer", "product", "supplier", "general")


def init_memory_db() -> None:
    ensure_sqlite_dir()
    ts_type = "BIGINT" if is_postgres() else "INTEGER"
    with connect() as conn:
        apply_sqlite_pragmas(conn)
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                created_by TEXT NOT NULL,
                entity_name TEXT NOT NULL,
                entity_key TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at {ts_type} NOT NULL
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_memories_owner ON memories (tenant_id, created_by, entity_key)"
        )
        conn.commit()


def save_note(tenant_id: str, user_id: str, entity_name: str, content: str, entity_type: str = "general") -> str:
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"Unknown entity type: {entity_type}")
    init_memory_db()
    note_id = str(uuid.uuid4())
    name = entity_name.strip()
    with connect() as conn:
        conn.execute(
            sql(
                """
                INSERT INTO memories (id, tenant_id, created_by, entity_name, entity_key, entity_type, content, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """
            ),
            (note_id, tenant_id, user_id, name, name.casefold(), entity_type, content[:MAX_NOTE_CHARS], time.time_ns()),
        )
        conn.commit()
    return note_id


def recall_notes(tenant_id: str, user_id: str, entity_name: str, limit: int = RECALL_LIMIT) -> List[Dict[str, Any]]:
    """Newest notes whose entity name contains `entity_name`."""
    init_memory_db()
    pattern = f"%{entity_name.strip().casefold()}%"
    with connect() as conn:
        rows = conn.execute(
            sql(
                """
                SELECT entity_name, entity_type, content, created_at
                FROM memories
                WHERE tenant_id = ? AND created_by = ? AND entity_key LIKE ?
                ORDER BY created_at DESC
                LIMIT ?
                """
            ),
            (tenant_id, user_id, pattern, limit),
        ).fetchall()
    return [dict(r) for r in rows]
