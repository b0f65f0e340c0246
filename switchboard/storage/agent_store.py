"""
Agent store: SQLite- or Postgres-backed per-tenant agent directory.

Agents table: (tenant_id, slug, name, description, system_prompt, custom_instructions,
tools, keywords, rag_enabled, is_active, template_origin_id, created_at, updated_at)
One connection per call; DB_PATH from env (default ./data/switchboard.db).
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

from switchboard.agent_loader import SLUG_RE, load_templates
from switchboard.models import AgentDefinition
from switchboard.storage.db import apply_sqlite_pragmas, as_bool, connect, ensure_sqlite_dir, is_postgres, sql

logger = logging.getLogger("switchboard")

_MAX_PROMPT_CHARS = 20_000
_EDITABLE_FIELDS = (
    "name",
    "description",
    "system_prompt",
    "custom_instructions",
    "tool_names",
    "keywords",
    "rag_enabled",
    "is_active",
)


class AgentStoreError(RuntimeError):
    """Base agent store error."""


class AgentNotFound(AgentStoreError):
    """Raised when a tenant has no agent with the given slug."""


class AgentDeletionForbidden(AgentStoreError):
    """Raised when deleting an agent derived from a built-in template."""


class AgentAlreadyExists(AgentStoreError):
    """Raised when creating a slug the tenant already uses."""


class AgentSpecInvalid(AgentStoreError):
    """Raised when an agent payload fails validation."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


def init_agent_db() -> None:
    """
    Create the agents table. Call at app startup.
    """
    ensure_sqlite_dir()
    bool_type = "BOOLEAN" if is_postgres() else "INTEGER"
    ts_type = "BIGINT" if is_postgres() else "INTEGER"
    with connect() as conn:
        apply_sqlite_pragmas(conn)
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS agents (
                tenant_id TEXT NOT NULL,
                slug TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL,
                system_prompt TEXT NOT NULL,
                custom_instructions TEXT,
                tools TEXT NOT NULL,
                keywords TEXT NOT NULL,
                rag_enabled {bool_type} NOT NULL,
                is_active {bool_type} NOT NULL,
                template_origin_id TEXT,
                created_at {ts_type} NOT NULL,
                updated_at {ts_type} NOT NULL,
                PRIMARY KEY (tenant_id, slug)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_agents_tenant ON agents (tenant_id)")
        conn.commit()


def _row_to_agent(row: Any) -> AgentDefinition:
    return AgentDefinition(
        slug=row["slug"],
        name=row["name"],
        description=row["description"],
        system_prompt=row["system_prompt"],
        custom_instructions=row["custom_instructions"],
        tool_names=json.loads(row["tools"] or "[]"),
        keywords=json.loads(row["keywords"] or "[]"),
        rag_enabled=bool(row["rag_enabled"]),
        is_active=bool(row["is_active"]),
        template_origin_id=row["template_origin_id"],
    )


def _insert(conn: Any, tenant_id: str, agent: AgentDefinition) -> None:
    now = time.time_ns()
    conn.execute(
        sql(
            """
            INSERT INTO agents (
                tenant_id, slug, name, description, system_prompt, custom_instructions,
                tools, keywords, rag_enabled, is_active, template_origin_id, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """
        ),
        (
            tenant_id,
            agent.slug,
            agent.name,
            agent.description,
            agent.system_prompt,
            agent.custom_instructions,
            json.dumps(agent.tool_names),
            json.dumps(agent.keywords),
            as_bool(agent.rag_enabled),
            as_bool(agent.is_active),
            agent.template_origin_id,
            now,
            now,
        ),
    )


def seed_from_templates(tenant_id: str) -> int:
    """
    Insert every built-in template the tenant does not have yet.
    Existing agents (including deactivated ones) are left untouched.
    Returns the number of agents inserted.
    """
    init_agent_db()
    inserted = 0
    with connect() as conn:
        existing = {
            row["slug"]
            for row in conn.execute(sql("SELECT slug FROM agents WHERE tenant_id = ?"), (tenant_id,)).fetchall()
        }
        for template in load_templates():
            if template.id in existing:
                continue
            _insert(conn, tenant_id, template.to_definition())
            inserted += 1
        conn.commit()
    if inserted:
        logger.info("seeded agents tenant=%s count=%s", tenant_id, inserted)
    return inserted


def get_agent(tenant_id: str, slug: str) -> Optional[AgentDefinition]:
    """Any agent by slug, active or not."""
    init_agent_db()
    with connect() as conn:
        row = conn.execute(
            sql("SELECT * FROM agents WHERE tenant_id = ? AND slug = ?"),
            (tenant_id, slug),
        ).fetchone()
    return _row_to_agent(row) if row is not None else None


def get_agent_by_slug(tenant_id: str, slug: str) -> Optional[AgentDefinition]:
    """Active agent by slug; inactive agents are invisible to the pipeline."""
    agent = get_agent(tenant_id, slug)
    if agent is None or not agent.is_active:
        return None
    return agent


def list_agents(tenant_id: str, *, include_inactive: bool = False) -> List[AgentDefinition]:
    init_agent_db()
    query = "SELECT * FROM agents WHERE tenant_id = ?"
    params: List[Any] = [tenant_id]
    if not include_inactive:
        query += " AND is_active = ?"
        params.append(as_bool(True))
    query += " ORDER BY slug"
    with connect() as conn:
        rows = conn.execute(sql(query), params).fetchall()
    return [_row_to_agent(row) for row in rows]


def _known_tool(entry: str) -> bool:
    from switchboard.skills import get_registry

    return get_registry().is_known(entry)


def _validate(agent: AgentDefinition) -> None:
    if not SLUG_RE.match(agent.slug):
        raise AgentSpecInvalid(f"Agent slug must match {SLUG_RE.pattern}")
    if not agent.name.strip():
        raise AgentSpecInvalid("Agent name is required")
    if len(agent.system_prompt) > _MAX_PROMPT_CHARS or len(agent.custom_instructions or "") > _MAX_PROMPT_CHARS:
        raise AgentSpecInvalid("Prompt too long")
    unknown = [t for t in agent.tool_names if not _known_tool(t)]
    if unknown:
        raise AgentSpecInvalid("Unknown tools", details={"tools": unknown})


def create_agent(tenant_id: str, agent: AgentDefinition) -> AgentDefinition:
    """Admin-created agent. Never template-derived."""
    init_agent_db()
    agent = agent.model_copy(update={"template_origin_id": None})
    _validate(agent)
    with connect() as conn:
        existing = conn.execute(
            sql("SELECT 1 FROM agents WHERE tenant_id = ? AND slug = ?"),
            (tenant_id, agent.slug),
        ).fetchone()
        if existing is not None:
            raise AgentAlreadyExists(f"Agent already exists: {agent.slug}")
        _insert(conn, tenant_id, agent)
        conn.commit()
    return agent


def update_agent(tenant_id: str, slug: str, changes: Dict[str, Any]) -> AgentDefinition:
    """Apply an admin edit. Only editable fields are accepted."""
    current = get_agent(tenant_id, slug)
    if current is None:
        raise AgentNotFound(f"Agent not found: {slug}")
    unknown = sorted(set(changes) - set(_EDITABLE_FIELDS))
    if unknown:
        raise AgentSpecInvalid("Fields cannot be edited", details={"fields": unknown})
    try:
        updated = AgentDefinition(**{**current.model_dump(), **changes})
    except ValueError as exc:
        raise AgentSpecInvalid("Invalid agent fields", details={"message": str(exc)}) from exc
    _validate(updated)
    with connect() as conn:
        conn.execute(
            sql(
                """
                UPDATE agents SET
                    name = ?, description = ?, system_prompt = ?, custom_instructions = ?,
                    tools = ?, keywords = ?, rag_enabled = ?, is_active = ?, updated_at = ?
                WHERE tenant_id = ? AND slug = ?
                """
            ),
            (
                updated.name,
                updated.description,
                updated.system_prompt,
                updated.custom_instructions,
                json.dumps(updated.tool_names),
                json.dumps(updated.keywords),
                as_bool(updated.rag_enabled),
                as_bool(updated.is_active),
                time.time_ns(),
                tenant_id,
                slug,
            ),
        )
        conn.commit()
    return updated


def deactivate_agent(tenant_id: str, slug: str) -> AgentDefinition:
    return update_agent(tenant_id, slug, {"is_active": False})


def delete_agent(tenant_id: str, slug: str) -> None:
    """
    Physically delete an admin-created agent.
    Template-derived agents can only be deactivated.
    """
    current = get_agent(tenant_id, slug)
    if current is None:
        raise AgentNotFound(f"Agent not found: {slug}")
    if current.is_template_derived:
        raise AgentDeletionForbidden(
            f"Agent '{slug}' comes from a built-in template and can only be deactivated"
        )
    with connect() as conn:
        conn.execute(sql("DELETE FROM agents WHERE tenant_id = ? AND slug = ?"), (tenant_id, slug))
        conn.commit()


class StoreAgentDirectory:
    """Agent directory backed by this store; seeds built-in templates on first access."""

    def __init__(self, *, auto_seed: bool = True):
        self._auto_seed = auto_seed
        self._seeded: set = set()

    def _ensure(self, tenant_id: str) -> None:
        if self._auto_seed and tenant_id not in self._seeded:
            seed_from_templates(tenant_id)
            self._seeded.add(tenant_id)

    def get_agent_by_slug(self, tenant_id: str, slug: str) -> Optional[AgentDefinition]:
        self._ensure(tenant_id)
        return get_agent_by_slug(tenant_id, slug)

    def list_active(self, tenant_id: str) -> List[AgentDefinition]:
        self._ensure(tenant_id)
        return list_agents(tenant_id)
