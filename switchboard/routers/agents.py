"""
Agent directory API.

Per-tenant listing and admin edits of agents. Template-derived agents can be
deactivated but never deleted. Uses the build_error_envelope / request_id
pattern shared with /chat.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from switchboard.dependencies import AuthError, TenantError, enforce_auth, get_tenant_id
from switchboard.engine import build_error_envelope, new_request_id
from switchboard.models import AgentDefinition
from switchboard.storage import agent_store

logger = logging.getLogger("switchboard")

router = APIRouter(prefix="/agents", tags=["agents"])


def _agents_error(status_code: int, code: str, message: str, details: Any = None, slug: Optional[str] = None) -> JSONResponse:
    _, body = build_error_envelope(
        request_id=new_request_id(),
        agent_slug=slug,
        status_code=status_code,
        code=code,
        message=message,
        details=details,
    )
    return JSONResponse(status_code=status_code, content=body)


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = str(value).strip().lower()
    if lowered in {"true", "1", "yes"}:
        return True
    if lowered in {"false", "0", "no"}:
        return False
    return None


def _agent_body(agent: AgentDefinition) -> dict:
    body = agent.model_dump()
    body["is_template_derived"] = agent.is_template_derived
    return body


def _tenant_and_auth(request: Request, *, require_auth: bool) -> str:
    tenant_id = get_tenant_id(request)
    if require_auth:
        enforce_auth(request)
    return tenant_id


@router.get("")
async def get_agents(request: Request, include_inactive: Optional[str] = None) -> JSONResponse:
    """
    List the tenant's agents. Built-in templates are seeded on first access.
    Returns 200 with { "agents": [ ... ] }.
    """
    try:
        tenant_id = get_tenant_id(request)
    except TenantError as exc:
        return _agents_error(400, "MISSING_TENANT", str(exc))

    agent_store.seed_from_templates(tenant_id)
    agents = agent_store.list_agents(tenant_id, include_inactive=bool(_parse_bool(include_inactive)))
    return JSONResponse(status_code=200, content={"agents": [_agent_body(a) for a in agents]})


@router.post("")
async def create_agent(request: Request) -> JSONResponse:
    """Create an admin-defined agent."""
    try:
        tenant_id = _tenant_and_auth(request, require_auth=True)
    except TenantError as exc:
        return _agents_error(400, "MISSING_TENANT", str(exc))
    except AuthError as exc:
        return _agents_error(401, "UNAUTHORIZED", str(exc))

    try:
        payload = await request.json()
    except ValueError:
        return _agents_error(400, "MALFORMED_REQUEST", "Request body must be valid JSON")
    if not isinstance(payload, dict):
        return _agents_error(400, "AGENT_SPEC_INVALID", "Request body must be an object")

    try:
        agent = AgentDefinition(**payload)
        created = agent_store.create_agent(tenant_id, agent)
    except ValueError as exc:
        return _agents_error(400, "AGENT_SPEC_INVALID", "Invalid agent fields", details={"message": str(exc)})
    except agent_store.AgentSpecInvalid as exc:
        return _agents_error(400, "AGENT_SPEC_INVALID", str(exc), details=exc.details)
    except agent_store.AgentAlreadyExists as exc:
        return _agents_error(409, "AGENT_EXISTS", str(exc))

    return JSONResponse(status_code=201, content=_agent_body(created))


@router.get("/{slug}")
async def get_agent(request: Request, slug: str) -> JSONResponse:
    try:
        tenant_id = get_tenant_id(request)
    except TenantError as exc:
        return _agents_error(400, "MISSING_TENANT", str(exc))

    agent_store.seed_from_templates(tenant_id)
    agent = agent_store.get_agent(tenant_id, slug)
    if agent is None:
        return _agents_error(404, "AGENT_NOT_FOUND", f"Agent not found: {slug}", slug=slug)
    return JSONResponse(status_code=200, content=_agent_body(agent))


@router.patch("/{slug}")
async def update_agent(request: Request, slug: str) -> JSONResponse:
    """Admin edit of an agent's editable fields."""
    try:
        tenant_id = _tenant_and_auth(request, require_auth=True)
    except TenantError as exc:
        return _agents_error(400, "MISSING_TENANT", str(exc))
    except AuthError as exc:
        return _agents_error(401, "UNAUTHORIZED", str(exc))

    try:
        changes = await request.json()
    except ValueError:
        return _agents_error(400, "MALFORMED_REQUEST", "Request body must be valid JSON")
    if not isinstance(changes, dict) or not changes:
        return _agents_error(400, "AGENT_SPEC_INVALID", "Request body must be a non-empty object", slug=slug)

    try:
        updated = agent_store.update_agent(tenant_id, slug, changes)
    except agent_store.AgentNotFound as exc:
        return _agents_error(404, "AGENT_NOT_FOUND", str(exc), slug=slug)
    except agent_store.AgentSpecInvalid as exc:
        return _agents_error(400, "AGENT_SPEC_INVALID", str(exc), details=exc.details, slug=slug)

    return JSONResponse(status_code=200, content=_agent_body(updated))


@router.post("/{slug}/deactivate")
async def deactivate_agent(request: Request, slug: str) -> JSONResponse:
    try:
        tenant_id = _tenant_and_auth(request, require_auth=True)
    except TenantError as exc:
        return _agents_error(400, "MISSING_TENANT", str(exc))
    except AuthError as exc:
        return _agents_error(401, "UNAUTHORIZED", str(exc))

    try:
        agent = agent_store.deactivate_agent(tenant_id, slug)
    except agent_store.AgentNotFound as exc:
        return _agents_error(404, "AGENT_NOT_FOUND", str(exc), slug=slug)

    return JSONResponse(status_code=200, content={"ok": True, "slug": agent.slug, "status": "inactive"})


@router.delete("/{slug}")
async def delete_agent(request: Request, slug: str) -> JSONResponse:
    """Physically delete an admin-created agent; 409 for template-derived ones."""
    try:
        tenant_id = _tenant_and_auth(request, require_auth=True)
    except TenantError as exc:
        return _agents_error(400, "MISSING_TENANT", str(exc))
    except AuthError as exc:
        return _agents_error(401, "UNAUTHORIZED", str(exc))

    try:
        agent_store.delete_agent(tenant_id, slug)
    except agent_store.AgentNotFound as exc:
        return _agents_error(404, "AGENT_NOT_FOUND", str(exc), slug=slug)
    except agent_store.AgentDeletionForbidden as exc:
        return _agents_error(409, "AGENT_DELETION_FORBIDDEN", str(exc), slug=slug)
    except Exception as exc:
        logger.exception("delete_agent failed")
        return _agents_error(500, "STORE_ERROR", "Failed to delete agent", details={"message": str(exc)}, slug=slug)

    return JSONResponse(status_code=200, content={"ok": True, "slug": slug, "status": "deleted"})
