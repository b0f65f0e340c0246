"""
Chat API: one conversational turn per request.

POST /chat returns the final answer; POST /chat/stream emits Server-Sent
Events (`thinking`, `summary`, then `answer` or `error`).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from switchboard.config import get_settings
from switchboard.dependencies import AuthError, TenantError, enforce_auth, get_provider, get_tenant_id, get_usage_meter
from switchboard.engine import ErrorEnvelope, build_error_envelope, new_request_id, process_request
from switchboard.models import AgentDefinition, ChatRequest
from switchboard.rate_limit import CHAT_RULE, SimpleRateLimiter, chat_limiter
from switchboard.storage.agent_store import StoreAgentDirectory
from switchboard.usage import BillingExceeded, UsageMeter

logger = logging.getLogger("switchboard")

router = APIRouter(prefix="/chat", tags=["chat"])

_limiter: Optional[SimpleRateLimiter] = None


def get_chat_limiter() -> SimpleRateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = chat_limiter()
    return _limiter


def get_directory() -> StoreAgentDirectory:
    return StoreAgentDirectory()


def _error_response(request_id: str, status_code: int, code: str, message: str, details: Any = None, slug: Optional[str] = None) -> JSONResponse:
    _, body = build_error_envelope(
        request_id=request_id,
        agent_slug=slug,
        status_code=status_code,
        code=code,
        message=message,
        details=details,
    )
    return JSONResponse(status_code=status_code, content=body)


async def _prepare(
    request: Request,
    limiter: SimpleRateLimiter,
    directory: StoreAgentDirectory,
) -> Tuple[str, ChatRequest, AgentDefinition, Optional[str]]:
    """Tenant, auth, throttle, body and base agent. Raises ErrorEnvelope."""
    try:
        tenant_id = get_tenant_id(request)
    except TenantError as exc:
        raise ErrorEnvelope(status_code=400, code="MISSING_TENANT", message=str(exc)) from exc

    try:
        claims = enforce_auth(request)
    except AuthError as exc:
        raise ErrorEnvelope(status_code=401, code="UNAUTHORIZED", message=str(exc)) from exc

    try:
        payload = await request.json()
    except ValueError as exc:
        raise ErrorEnvelope(
            status_code=400,
            code="MALFORMED_REQUEST",
            message="Request body must be valid JSON",
            details={"message": str(exc)},
        ) from exc

    try:
        chat = ChatRequest(**payload) if isinstance(payload, dict) else None
    except ValueError as exc:
        raise ErrorEnvelope(
            status_code=422,
            code="INPUT_VALIDATION_ERROR",
            message="Request body failed validation",
            details={"message": str(exc)},
        ) from exc
    if chat is None or not chat.messages:
        raise ErrorEnvelope(status_code=422, code="INPUT_VALIDATION_ERROR", message="'messages' must be a non-empty list")

    user_id = chat.user_id or (str(claims["sub"]) if claims and claims.get("sub") else None)
    client_id = f"{tenant_id}:{chat.user_email or (request.client.host if request.client else 'unknown')}"
    if not await limiter.allow(CHAT_RULE, client_id):
        raise ErrorEnvelope(
            status_code=429,
            code="RATE_LIMITED",
            message="Too many requests",
            details={"retry_after": limiter.retry_after(CHAT_RULE, client_id)},
        )

    slug = chat.agent_slug or get_settings().default_agent_slug
    agent = directory.get_agent_by_slug(tenant_id, slug)
    if agent is None:
        raise ErrorEnvelope(status_code=404, code="AGENT_NOT_FOUND", message=f"Agent not found: {slug}")
    return tenant_id, chat, agent, user_id


@router.post("")
async def chat(
    request: Request,
    provider=Depends(get_provider),
    usage_meter: UsageMeter = Depends(get_usage_meter),
    limiter: SimpleRateLimiter = Depends(get_chat_limiter),
    directory: StoreAgentDirectory = Depends(get_directory),
) -> JSONResponse:
    request_id = new_request_id()
    start = time.monotonic()
    try:
        tenant_id, body, agent, user_id = await _prepare(request, limiter, directory)
    except ErrorEnvelope as exc:
        return _error_response(request_id, exc.status_code, exc.code, exc.message, exc.details)

    try:
        response = await process_request(
            tenant_id,
            body.user_email,
            user_id,
            agent,
            body.messages,
            channel=body.channel,
            mentioned_agent_slug=body.mentioned_agent_slug,
            provider=provider,
            directory=directory,
            usage_meter=usage_meter,
        )
    except BillingExceeded as exc:
        return _error_response(
            request_id, 402, "USAGE_LIMIT_EXCEEDED", str(exc), {"current": exc.current, "limit": exc.limit}, agent.slug
        )
    except asyncio.TimeoutError:
        return _error_response(request_id, 504, "TIMEOUT", "Request deadline exceeded", slug=agent.slug)
    except Exception as exc:
        logger.exception("chat failed request_id=%s", request_id)
        return _error_response(request_id, 500, "INTERNAL_ERROR", "Chat pipeline failure", {"message": str(exc)}, agent.slug)

    content: Dict[str, Any] = response.model_dump(exclude_none=True)
    content["meta"] = {
        "request_id": request_id,
        "agent": response.agent_slug,
        "latency_ms": (time.monotonic() - start) * 1000.0,
    }
    return JSONResponse(status_code=200, content=content)


def _sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False, default=str)}\n\n"


@router.post("/stream")
async def chat_stream(
    request: Request,
    provider=Depends(get_provider),
    usage_meter: UsageMeter = Depends(get_usage_meter),
    limiter: SimpleRateLimiter = Depends(get_chat_limiter),
    directory: StoreAgentDirectory = Depends(get_directory),
):
    request_id = new_request_id()
    try:
        tenant_id, body, agent, user_id = await _prepare(request, limiter, directory)
    except ErrorEnvelope as exc:
        return _error_response(request_id, exc.status_code, exc.code, exc.message, exc.details)

    queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    async def on_step(step) -> None:
        await queue.put(_sse("thinking", step.to_dict()))

    async def on_summary(text: str) -> None:
        await queue.put(_sse("summary", {"text": text}))

    async def run() -> None:
        try:
            response = await process_request(
                tenant_id,
                body.user_email,
                user_id,
                agent,
                body.messages,
                channel=body.channel,
                streaming=True,
                mentioned_agent_slug=body.mentioned_agent_slug,
                on_thinking_step=on_step,
                on_thinking_summary=on_summary,
                provider=provider,
                directory=directory,
                usage_meter=usage_meter,
            )
            payload = response.model_dump(exclude_none=True)
            payload["meta"] = {"request_id": request_id, "agent": response.agent_slug}
            await queue.put(_sse("answer", payload))
        except BillingExceeded as exc:
            await queue.put(_sse("error", {"code": "USAGE_LIMIT_EXCEEDED", "message": str(exc)}))
        except asyncio.TimeoutError:
            await queue.put(_sse("error", {"code": "TIMEOUT", "message": "Request deadline exceeded"}))
        except Exception as exc:
            logger.exception("chat stream failed request_id=%s", request_id)
            await queue.put(_sse("error", {"code": "INTERNAL_ERROR", "message": str(exc)}))
        finally:
            await queue.put(None)

    async def event_stream():
        task = asyncio.create_task(run())
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield item
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(event_stream(), media_type="text/event-stream")
