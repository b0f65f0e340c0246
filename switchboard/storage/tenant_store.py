"""
Tenant store: company context and integration credentials per tenant.

company_contexts table: (tenant_id, name, industry, description, briefing, key_customers,
key_products, key_suppliers, business_rules, tone_of_voice, updated_at)
integrations table: (tenant_id, type, config_json, is_active, updated_at)
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

from switchboard.storage.db import apply_sqlite_pragmas, as_bool, connect, ensure_sqlite_dir, is_postgres, sql

logger = logging.getLogger("switchboard")

_MAX_KEY_ITEMS = 10
_MAX_RULES = 5


def init_tenant_db() -> None:
    ensure_sqlite_dir()
    bool_type = "BOOLEAN" if is_postgres() else "INTEGER"
    ts_type = "BIGINT" if is_postgres() else "INTEGER"
    with connect() as conn:
        apply_sqlite_pragmas(conn)
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS company_contexts (
                tenant_id TEXT PRIMARY KEY,
                name TEXT,
                industry TEXT,
                description TEXT,
                briefing TEXT,
                key_customers TEXT,
                key_products TEXT,
                key_suppliers TEXT,
                business_rules TEXT,
                tone_of_voice TEXT,
                updated_at {ts_type} NOT NULL
            )
            """
        )
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS integrations (
                tenant_id TEXT NOT NULL,
                type TEXT NOT NULL,
                config_json TEXT NOT NULL,
                is_active {bool_type} NOT NULL,
                updated_at {ts_type} NOT NULL,
                PRIMARY KEY (tenant_id, type)
            )
            """
        )
        conn.commit()


def upsert_company_context(tenant_id: str, context: Dict[str, Any]) -> None:
    init_tenant_db()
    list_fields = ("key_customers", "key_products", "key_suppliers", "business_rules")
    values = {f: json.dumps(context.get(f) or []) for f in list_fields}
    with connect() as conn:
        conn.execute(
            sql(
                """
                INSERT INTO company_contexts (
                    tenant_id, name, industry, description, briefing, key_customers,
                    key_products, key_suppliers, business_rules, tone_of_voice, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (tenant_id) DO UPDATE SET
                    name = excluded.name,
                    industry = excluded.industry,
                    description = excluded.description,
                    briefing = excluded.briefing,
                    key_customers = excluded.key_customers,
                    key_products = excluded.key_products,
                    key_suppliers = excluded.key_suppliers,
                    business_rules = excluded.business_rules,
                    tone_of_voice = excluded.tone_of_voice,
                    updated_at = excluded.updated_at
                """
            ),
            (
                tenant_id,
                context.get("name"),
                context.get("industry"),
                context.get("description"),
                context.get("briefing"),
                values["key_customers"],
                values["key_products"],
                values["key_suppliers"],
                values["business_rules"],
                context.get("tone_of_voice"),
                time.time_ns(),
            ),
        )
        conn.commit()


def get_company_context(tenant_id: str) -> Optional[Dict[str, Any]]:
    init_tenant_db()
    with connect() as conn:
        row = conn.execute(sql("SELECT * FROM company_contexts WHERE tenant_id = ?"), (tenant_id,)).fetchone()
    if row is None:
        return None
    out = dict(row)
    for f in ("key_customers", "key_products", "key_suppliers", "business_rules"):
        try:
            out[f] = json.loads(out.get(f) or "[]")
        except ValueError:
            out[f] = []
    return out


def _named_list(items: List[Any]) -> str:
    rendered = []
    for item in items[:_MAX_KEY_ITEMS]:
        if isinstance(item, dict):
            name = str(item.get("name") or "").strip()
            notes = str(item.get("notes") or "").strip()
            if name:
                rendered.append(f"{name} ({notes})" if notes else name)
        elif str(item).strip():
            rendered.append(str(item).strip())
    return ", ".join(rendered)


def format_context_text(ctx: Optional[Dict[str, Any]]) -> str:
    """Compact company context; a briefing replaces the structured fields."""
    if not ctx:
        return ""
    parts: List[str] = []
    if ctx.get("name"):
        parts.append(f"EMPRESA: {ctx['name']}")
    if ctx.get("briefing"):
        parts.append(str(ctx["briefing"]).strip())
        return "\n".join(parts)
    if ctx.get("industry"):
        parts.append(f"RUBRO: {ctx['industry']}")
    if ctx.get("description"):
        parts.append(f"DESCRIPCIÓN: {ctx['description']}")
    for key, label in (
        ("key_customers", "CLIENTES CLAVE"),
        ("key_products", "PRODUCTOS CLAVE"),
        ("key_suppliers", "PROVEEDORES CLAVE"),
    ):
        rendered = _named_list(ctx.get(key) or [])
        if rendered:
            parts.append(f"{label}: {rendered}")
    rules = [str(r).strip() for r in (ctx.get("business_rules") or []) if str(r).strip()]
    if rules:
        parts.append(f"REGLAS: {'. '.join(rules[:_MAX_RULES])}")
    if ctx.get("tone_of_voice"):
        parts.append(f"TONO: {ctx['tone_of_voice']}")
    return "\n".join(parts)


def get_context_text(tenant_id: str) -> str:
    return format_context_text(get_company_context(tenant_id))


def set_integration(tenant_id: str, integration_type: str, config: Dict[str, Any], *, is_active: bool = True) -> None:
    init_tenant_db()
    with connect() as conn:
        conn.execute(
            sql(
                """
                INSERT INTO integrations (tenant_id, type, config_json, is_active, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (tenant_id, type) DO UPDATE SET
                    config_json = excluded.config_json,
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
                """
            ),
            (tenant_id, integration_type, json.dumps(config), as_bool(is_active), time.time_ns()),
        )
        conn.commit()


def get_integration_config(tenant_id: str, integration_type: str) -> Optional[Dict[str, Any]]:
    """Config of an active integration, or None."""
    init_tenant_db()
    with connect() as conn:
        row = conn.execute(
            sql("SELECT config_json, is_active FROM integrations WHERE tenant_id = ? AND type = ?"),
            (tenant_id, integration_type),
        ).fetchone()
    if row is None or not bool(row["is_active"]):
        return None
    try:
        config = json.loads(row["config_json"])
    except ValueError:
        logger.warning("unreadable integration config tenant=%s type=%s", tenant_id, integration_type)
        return None
    return config if isinstance(config, dict) else None


class StoreContextProvider:
    def get_context_text(self, tenant_id: str) -> str:
        return get_context_text(tenant_id)
