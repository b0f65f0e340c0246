"""
Router: picks the agent that handles a message.

Order of precedence:
1. explicit @mention / mentioned slug that exists in the directory (high);
2. Tier 1, keyword scoring over each agent's keyword set (high when the
   winner clears the margin);
3. Tier 2, one classification call to the model transport;
4. fallback to the tenant's general agent (low).

The router reads the directory and may call the provider once; it never
writes anything.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .config import get_settings
from .models import AgentDefinition, RoutingDecision
from .providers import BaseProvider

logger = logging.getLogger("switchboard")

MENTION_RE = re.compile(r"^@([a-z][a-z0-9_-]{0,48})\s+")
_CONFIDENCES = ("high", "medium", "low")


class AgentDirectory(Protocol):
    def get_agent_by_slug(self, tenant_id: str, slug: str) -> Optional[AgentDefinition]: ...

    def list_active(self, tenant_id: str) -> List[AgentDefinition]: ...


def parse_mention(message: str, available_slugs: Sequence[str]) -> Tuple[Optional[str], str]:
    """
    Split a leading `@slug ` off the message.

    Returns (slug, stripped_message) when the slug is known, otherwise
    (None, message) unchanged.
    """
    match = MENTION_RE.match(message or "")
    if not match:
        return None, message
    slug = match.group(1)
    if slug not in set(available_slugs):
        return None, message
    return slug, message[match.end():]


def score_keywords(message: str, agents: Sequence[AgentDefinition]) -> List[Tuple[str, int, List[str]]]:
    """
    Tier-1 scores as (slug, score, matched_keywords), best first.

    Every keyword found as a substring of the lower-cased message adds its
    word count, so multi-word phrases weigh more. Ties sort by slug.
    """
    text = (message or "").lower()
    scored = []
    for agent in agents:
        matched = [kw for kw in agent.keywords if kw and kw.lower() in text]
        score = sum(len(kw.split()) for kw in matched)
        scored.append((agent.slug, score, matched))
    return sorted(scored, key=lambda item: (-item[1], item[0]))


def tier_one(
    message: str, agents: Sequence[AgentDefinition], *, margin: int = 1
) -> Optional[RoutingDecision]:
    """High-confidence keyword decision, or None when ambiguous."""
    scored = [s for s in score_keywords(message, agents) if s[1] > 0 or s[2]]
    if not scored:
        return None
    top_slug, top_score, matched = scored[0]
    runner_up = scored[1][1] if len(scored) > 1 else 0
    if top_score <= 0 or top_score - runner_up < margin:
        return None
    return RoutingDecision(
        agent_slug=top_slug,
        confidence="high",
        reason=f"keywords: {', '.join(matched[:5])}",
    )


ROUTING_SCHEMA_BASE: Dict[str, Any] = {
    "type": "object",
    "required": ["agent_slug", "confidence", "reason"],
    "properties": {
        "agent_slug": {"type": "string"},
        "confidence": {"type": "string", "enum": list(_CONFIDENCES)},
        "reason": {"type": "string"},
    },
    "additionalProperties": False,
}


def build_classification_prompt(
    message: str, agents: Sequence[AgentDefinition], *, default_slug: str, context: str = ""
) -> str:
    agent_list = "\n".join(
        f"- **{a.slug}**: {a.description or a.name}{' [tiene documentos internos]' if a.rag_enabled else ''}"
        for a in agents
    )
    body = f"Contexto previo: {context}\n\nMensaje actual: {message}" if context else f"Mensaje actual: {message}"
    return (
        "Sos un router de agentes. Analizá el mensaje y elegí el agente más apropiado.\n\n"
        f"AGENTES DISPONIBLES:\n{agent_list}\n\n"
        "REGLAS:\n"
        "- Elegí el agente cuya descripción mejor matchee la intención del usuario\n"
        f"- Si hay ambigüedad, preferí el agente más general ({default_slug})\n"
        "- confidence: high si es obvio, medium si hay duda, low si es fallback\n\n"
        f"{body}"
    )


def _history_text(history: Sequence[Any], window: int) -> str:
    if window <= 0:
        return ""
    items = []
    for item in list(history)[-window:]:
        content = getattr(item, "content", item)
        if isinstance(item, dict):
            content = item.get("content", "")
        if content:
            items.append(str(content))
    return " | ".join(items)


def _fallback(default_slug: str, reason: str) -> RoutingDecision:
    return RoutingDecision(agent_slug=default_slug, confidence="low", reason=reason)


async def tier_two(
    message: str,
    history: Sequence[Any],
    agents: Sequence[AgentDefinition],
    provider: BaseProvider,
    *,
    default_slug: str,
    window: int = 3,
) -> RoutingDecision:
    """Semantic classification. Any failure degrades to the default agent."""
    slugs = [a.slug for a in agents]
    schema = dict(ROUTING_SCHEMA_BASE)
    schema["properties"] = dict(ROUTING_SCHEMA_BASE["properties"], agent_slug={"type": "string", "enum": slugs})
    prompt = build_classification_prompt(
        message, agents, default_slug=default_slug, context=_history_text(history, window)
    )
    try:
        result = await provider.complete_json(prompt, schema=schema)
    except Exception as exc:
        logger.warning("tier2 routing failed error=%s", exc)
        return _fallback(default_slug, "Error en routing, usando fallback")

    answer = result.parsed_json if isinstance(result.parsed_json, dict) else {}
    slug = answer.get("agent_slug")
    if slug not in slugs:
        logger.warning("tier2 returned unknown agent slug=%s", slug)
        return _fallback(default_slug, "Agente no encontrado, usando fallback")

    confidence = answer.get("confidence")
    if confidence not in _CONFIDENCES:
        confidence = "medium"
    return RoutingDecision(agent_slug=slug, confidence=confidence, reason=str(answer.get("reason") or "clasificación semántica"))


async def route(
    tenant_id: str,
    message: str,
    history: Sequence[Any],
    directory: AgentDirectory,
    *,
    provider: Optional[BaseProvider] = None,
    mentioned_slug: Optional[str] = None,
    default_slug: Optional[str] = None,
    margin: Optional[int] = None,
    window: Optional[int] = None,
) -> RoutingDecision:
    settings = get_settings()
    default_slug = default_slug or settings.default_agent_slug
    margin = settings.router_margin if margin is None else margin
    window = settings.router_history_window if window is None else window

    if mentioned_slug:
        mentioned = directory.get_agent_by_slug(tenant_id, mentioned_slug)
        if mentioned is not None:
            return RoutingDecision(agent_slug=mentioned.slug, confidence="high", reason="explicit selection")
        logger.info("mentioned agent not found tenant=%s slug=%s", tenant_id, mentioned_slug)

    agents = directory.list_active(tenant_id)
    if not agents:
        return _fallback(default_slug, "No hay agentes disponibles")
    if len(agents) == 1:
        return RoutingDecision(agent_slug=agents[0].slug, confidence="high", reason="único agente disponible")

    decision = tier_one(message, agents, margin=margin)
    if decision is not None:
        return decision

    if not any(a.slug != default_slug for a in agents):
        return _fallback(default_slug, "sin especialistas configurados")

    if provider is None:
        return _fallback(default_slug, "sin coincidencias de palabras clave")

    return await tier_two(message, history, agents, provider, default_slug=default_slug, window=window)
