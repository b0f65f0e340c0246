"""
Document store: searchable passages of a tenant's knowledge base.

documents table: (id, tenant_id, agent_slug, title, content, created_at)
A NULL agent_slug makes the document visible to every agent of the tenant.
Passages arrive already extracted; this module only stores and ranks them.
"""

from __future__ import annotations

import re
import time
import unicodedata
import uuid
from typing import Any, Dict, List, Optional

from switchboard.storage.db import apply_sqlite_pragmas, connect, ensure_sqlite_dir, is_postgres, sql

SEARCH_LIMIT = 5
_MIN_TERM_CHARS = 3
_WORD = re.compile(r"\w+", re.UNICODE)


def init_document_db() -> None:
    ensure_sqlite_dir()
    ts_type = "BIGINT" if is_postgres() else "INTEGER"
    with connect() as conn:
        apply_sqlite_pragmas(conn)
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                agent_slug TEXT,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at {ts_type} NOT NULL
            )
            """
        )
        conn.commit()


def add_document(tenant_id: str, title: str, content: str, *, agent_slug: Optional[str] = None) -> str:
    init_document_db()
    doc_id = str(uuid.uuid4())
    with connect() as conn:
        conn.execute(
            sql("INSERT INTO documents (id, tenant_id, agent_slug, title, content, created_at) VALUES (?, ?, ?, ?, ?, ?)"),
            (doc_id, tenant_id, agent_slug, title.strip(), content, time.time_ns()),
        )
        conn.commit()
    return doc_id


def list_documents(tenant_id: str, agent_slug: Optional[str] = None) -> List[Dict[str, Any]]:
    """Tenant-wide documents plus the ones attached to `agent_slug`."""
    init_document_db()
    with connect() as conn:
        rows = conn.execute(
            sql(
                """
                SELECT id, agent_slug, title, content
                FROM documents
                WHERE tenant_id = ? AND (agent_slug IS NULL OR agent_slug = ?)
                ORDER BY created_at ASC
                """
            ),
            (tenant_id, agent_slug),
        ).fetchall()
    return [dict(r) for r in rows]


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.casefold())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _terms(text: str) -> List[str]:
    seen: List[str] = []
    for word in _WORD.findall(_fold(text)):
        if len(word) >= _MIN_TERM_CHARS and word not in seen:
            seen.append(word)
    return seen


def _passages(content: str) -> List[str]:
    return [p.strip() for p in re.split(r"\n\s*\n", content) if p.strip()]


def search_documents(
    tenant_id: str, agent_slug: Optional[str], query: str, limit: int = SEARCH_LIMIT
) -> List[Dict[str, Any]]:
    """
    Rank passages by the share of query terms they contain.

    Matching ignores case and accents. Passages with no matching term are
    dropped; ties keep document order.
    """
    terms = _terms(query)
    if not terms:
        return []
    scored = []
    for doc in list_documents(tenant_id, agent_slug):
        for passage in _passages(doc["content"]):
            words = set(_WORD.findall(_fold(passage)))
            hits = sum(1 for t in terms if t in words)
            if hits:
                scored.append(
                    {
                        "document_id": doc["id"],
                        "title": doc["title"],
                        "content": passage,
                        "similarity": hits / len(terms),
                    }
                )
    scored.sort(key=lambda r: -r["similarity"])
    return scored[:limit]
