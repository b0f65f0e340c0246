from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from . import composer, router
from .config import get_settings
from .generation import Callback, GenerationState, StateMachine, generate
from .models import AgentDefinition, ChatResponse, ConversationMessage, normalize_channel
from .providers import BaseProvider, build_provider
from .skills.credentials import CredentialResolver, build_skill_context
from .skills.registry import SkillRegistry, get_registry
from .skills.types import Skill, SkillContext
from .storage.agent_store import StoreAgentDirectory
from .storage.tenant_store import StoreContextProvider
from .usage import UsageMeter, estimate_tokens

logger = logging.getLogger("switchboard")

# Reduced reasoning for the latency-sensitive channel.
THINKING_LEVELS = {"voice": "low", "messaging": "medium", "web": "medium"}

RAG_TOOL = "rag"


class ErrorEnvelope(Exception):
    """
    Custom exception used internally to simplify control flow.

    Handlers in `switchboard.main` convert this into the standardized error envelope.
    """

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_error_envelope(
    *,
    request_id: str,
    agent_slug: Optional[str],
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> Tuple[int, Dict[str, Any]]:
    meta = {
        "request_id": request_id,
        "agent": agent_slug or "unknown",
    }
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "meta": meta,
    }
    return status_code, body


@dataclass
class RequestContext:
    """Everything one request needs; built fresh per call and never shared."""

    request_id: str
    tenant_id: str
    user_key: str
    user_id: Optional[str]
    channel: str
    skill_context: SkillContext
    machine: StateMachine = field(default_factory=StateMachine)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def thinking_level(self) -> str:
        return THINKING_LEVELS.get(self.channel, "medium")

    def elapsed_ms(self) -> float:
        return round((time.monotonic() - self.started_at) * 1000.0, 1)


def effective_skills(
    registry: SkillRegistry, routed_agent: AgentDefinition, base_agent: AgentDefinition
) -> List[Skill]:
    """
    The routed agent's tools when it declares any, otherwise the base agent's.
    Agents with documents also get the knowledge-base search.
    """
    names = list(routed_agent.tool_names or base_agent.tool_names)
    if routed_agent.rag_enabled and RAG_TOOL not in names:
        names.append(RAG_TOOL)
    return registry.filtered(names)


def _last_user_index(messages: Sequence[ConversationMessage]) -> Optional[int]:
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].role == "user":
            return i
    return None


def _apply_mention(
    tenant_id: str,
    messages: List[ConversationMessage],
    directory: Any,
    mentioned_agent_slug: Optional[str],
) -> Tuple[List[ConversationMessage], Optional[str]]:
    """A leading @slug on the last user message acts as an explicit selection."""
    if mentioned_agent_slug:
        return messages, mentioned_agent_slug
    idx = _last_user_index(messages)
    if idx is None or not messages[idx].content.startswith("@"):
        return messages, None
    slugs = [a.slug for a in directory.list_active(tenant_id)]
    slug, stripped = router.parse_mention(messages[idx].content, slugs)
    if slug is None:
        return messages, None
    updated = list(messages)
    updated[idx] = messages[idx].model_copy(update={"content": stripped})
    return updated, slug


async def _run_pipeline(
    ctx: RequestContext,
    *,
    agent: AgentDefinition,
    messages: List[ConversationMessage],
    mentioned_slug: Optional[str],
    streaming: bool,
    on_thinking_step: Optional[Callback],
    on_thinking_summary: Optional[Callback],
    provider: BaseProvider,
    router_provider: Optional[BaseProvider],
    directory: Any,
    context_provider: Any,
    registry: SkillRegistry,
    max_rounds: int,
) -> ChatResponse:
    idx = _last_user_index(messages)
    last_message = messages[idx].content if idx is not None else ""
    history = [m.content for m in messages[: idx if idx is not None else len(messages)]]

    decision = await router.route(
        ctx.tenant_id,
        last_message,
        history,
        directory,
        provider=router_provider,
        mentioned_slug=mentioned_slug,
        default_slug=agent.slug,
    )
    routed = directory.get_agent_by_slug(ctx.tenant_id, decision.agent_slug) or agent
    logger.info(
        "routing request_id=%s tenant=%s agent=%s confidence=%s reason=%s",
        ctx.request_id,
        ctx.tenant_id,
        routed.slug,
        decision.confidence,
        decision.reason,
    )

    ctx.machine.advance(GenerationState.COMPOSING)
    system_text = composer.compose(
        ctx.tenant_id,
        agent.merged_system_prompt,
        routed,
        decision,
        agent.slug,
        ctx.channel,
        ctx.user_id,
        context_provider=context_provider,
    )
    skills = effective_skills(registry, routed, agent)

    result = await generate(
        system_text,
        messages,
        skills,
        provider=provider,
        registry=registry,
        skill_context=replace(ctx.skill_context, agent_slug=routed.slug),
        max_rounds=max_rounds,
        thinking_level=ctx.thinking_level,
        streaming=streaming,
        on_step=on_thinking_step,
        on_summary=on_thinking_summary,
        machine=ctx.machine,
    )

    report = result.validation
    if report is not None and not report.valid:
        logger.warning(
            "response validation request_id=%s score=%s warnings=%s",
            ctx.request_id,
            report.score,
            report.warnings,
        )

    return ChatResponse(
        text=result.text,
        tool_calls=result.tool_calls or None,
        usage=result.usage,
        agent_slug=routed.slug,
        routing=decision,
        validation=report,
    )


async def process_request(
    tenant_id: str,
    user_email: str,
    user_id: Optional[str],
    agent: AgentDefinition,
    messages: Sequence[ConversationMessage],
    channel: str = "web",
    streaming: bool = False,
    mentioned_agent_slug: Optional[str] = None,
    on_thinking_step: Optional[Callback] = None,
    on_thinking_summary: Optional[Callback] = None,
    *,
    provider: Optional[BaseProvider] = None,
    router_provider: Optional[BaseProvider] = None,
    directory: Any = None,
    context_provider: Any = None,
    usage_meter: Optional[UsageMeter] = None,
    credential_resolver: Optional[CredentialResolver] = None,
    registry: Optional[SkillRegistry] = None,
    timeout: Optional[float] = None,
    max_rounds: Optional[int] = None,
) -> ChatResponse:
    """
    Run one conversational turn end to end.

    Only BillingExceeded (pre-flight) escapes as a domain error. Every other
    failure is folded back into the answer. The deadline cancels in-flight
    model and skill calls and surfaces as asyncio.TimeoutError.
    """
    settings = get_settings()
    usage_meter = usage_meter or UsageMeter()
    messages = list(messages)
    user_key = user_email or user_id or "anonymous"

    idx = _last_user_index(messages)
    last_message = messages[idx].content if idx is not None else ""
    usage_meter.check_limit(tenant_id, user_key, estimate_tokens(last_message))

    directory = directory or StoreAgentDirectory()
    context_provider = context_provider or StoreContextProvider()
    registry = registry or get_registry()
    if provider is None:
        provider = build_provider()
        router_provider = router_provider or build_provider(settings.router_model_id)
    router_provider = router_provider or provider

    ctx = RequestContext(
        request_id=new_request_id(),
        tenant_id=tenant_id,
        user_key=user_key,
        user_id=user_id,
        channel=normalize_channel(channel),
        skill_context=build_skill_context(tenant_id, user_id or user_key, credential_resolver or CredentialResolver()),
    )
    messages, mentioned = _apply_mention(tenant_id, messages, directory, mentioned_agent_slug)
    logger.info(
        "request start request_id=%s tenant=%s agent=%s channel=%s streaming=%s",
        ctx.request_id,
        tenant_id,
        agent.slug,
        ctx.channel,
        streaming,
    )

    try:
        response = await asyncio.wait_for(
            _run_pipeline(
                ctx,
                agent=agent,
                messages=messages,
                mentioned_slug=mentioned,
                streaming=streaming,
                on_thinking_step=on_thinking_step,
                on_thinking_summary=on_thinking_summary,
                provider=provider,
                router_provider=router_provider,
                directory=directory,
                context_provider=context_provider,
                registry=registry,
                max_rounds=max_rounds or settings.max_tool_rounds,
            ),
            timeout=timeout if timeout is not None else settings.request_timeout_seconds,
        )
    except asyncio.TimeoutError:
        ctx.machine.fail()
        logger.warning("request deadline exceeded request_id=%s elapsed_ms=%s", ctx.request_id, ctx.elapsed_ms())
        raise
    except BaseException:
        ctx.machine.fail()
        raise

    usage_meter.track_usage(tenant_id, user_key, response.usage.total_tokens)
    logger.info(
        "request done request_id=%s agent=%s tools=%s tokens=%s latency_ms=%s",
        ctx.request_id,
        response.agent_slug,
        len(response.tool_calls or []),
        response.usage.total_tokens,
        ctx.elapsed_ms(),
    )
    return response
