from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .agent_loader import AgentLoadError, list_template_ids, load_templates
from .config import get_settings
from .engine import build_error_envelope, new_request_id
from .routers import agents as agents_router
from .routers import chat as chat_router
from .skills import get_registry
from .storage import agent_store, document_store, memory_store, tenant_store, usage_store


logger = logging.getLogger("switchboard")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize DB tables and the skill catalog."""
    agent_store.init_agent_db()
    tenant_store.init_tenant_db()
    usage_store.init_usage_db()
    memory_store.init_memory_db()
    document_store.init_document_db()
    registry = get_registry()
    logger.info("startup skills=%s templates=%s", len(registry), len(list_template_ids()))
    yield


app = FastAPI(title="Agent Switchboard", version="0.1.0", lifespan=lifespan)


# CORS: controlled by env CORS_ORIGINS (e.g. * or http://localhost:3000)
_cors_origins_list = [o.strip() for o in get_settings().cors_origins.strip().split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(agents_router.router)
app.include_router(chat_router.router)


@app.get("/")
async def root() -> Dict[str, Any]:
    """
    Service metadata endpoint.
    """
    settings = get_settings()
    return {
        "service": settings.service_name,
        "provider": settings.provider_name,
        "default_agent": settings.default_agent_slug,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health")
async def health() -> JSONResponse:
    """
    Simple health check. Returns 200 when built-in templates and skills load.
    """
    try:
        templates = load_templates()
        skills = len(get_registry())
    except AgentLoadError as exc:
        status_code, body = build_error_envelope(
            request_id=new_request_id(),
            agent_slug=None,
            status_code=500,
            code="INTERNAL_ERROR",
            message=str(exc),
            details=None,
        )
        return JSONResponse(status_code=status_code, content=body)

    return JSONResponse(status_code=200, content={"status": "ok", "templates": len(templates), "skills": skills})


def get_app() -> FastAPI:
    """Convenience accessor for external runners."""
    return app
