"""
Instruction composer: assembles the system text for one generation.

Pure string assembly. Identical inputs (and a pinned date) give identical output.
"""

from __future__ import annotations

from typing import Optional, Protocol

from . import dates
from .models import AgentDefinition, RoutingDecision

DATE_PLACEHOLDER = "{{CURRENT_DATE}}"
DEFAULT_PROMPT = "Sos un asistente útil."

CHANNEL_RULES = {
    "messaging": (
        "REGLA PARA WHATSAPP: Sé conciso. Formato Markdown simple (negritas, listas). "
        "Máximo 1500 caracteres por mensaje."
    ),
    "voice": (
        "REGLA PARA VOZ: Sé extremadamente conciso. Respuestas de máximo 2 oraciones, "
        "tipo telegrama elegante. No des rodeos ni explicaciones largas excepto que te lo pidan explícitamente."
    ),
}

EFFICIENCY_RULES = """EFICIENCIA Y VELOCIDAD:
- Ejecutá las consultas directamente, no pidas confirmación innecesaria
- Si el usuario pregunta por "ventas", usá el período actual (este mes) como default
- Si no especifica detalles, usá defaults razonables y mostrá los datos
- Solo pedí clarificación cuando sea REALMENTE ambiguo o falte info crítica
- Preferí dar una respuesta útil rápida que una pregunta de vuelta"""

PLANNING_RULES = """PLANIFICACIÓN DE HERRAMIENTAS:
- Antes de ejecutar herramientas, pensá qué datos necesitás para responder
- Máximo 3-4 llamadas a herramientas por pregunta
- Cuando tengas datos de distintas fuentes, sintetizá la respuesta vos, no sigas buscando
- Para comparaciones (ej: quién compra vs quién no), hacé 2 consultas amplias y calculá la diferencia vos
- NUNCA busques datos cliente por cliente, usá consultas agrupadas"""

TOOL_MESSAGING_RULES = """CUANDO USES HERRAMIENTAS: Comunicate profesionalmente. NO digas cosas como "🔍 Consultando: sale.report...". Sé directo:
- Respondé directamente con los datos
- Si necesitás un momento, decí algo breve como "Consultando..."
NUNCA menciones nombres técnicos de modelos, tablas o funciones."""

CONTEXT_PERSISTENCE_RULES = (
    "IMPORTANTE: Estás en una conversación fluida. Usa siempre los mensajes anteriores para entender "
    'referencias como "él", "eso", "ahora", o "qué productos?". '
    "No pidas aclaraciones si el contexto ya está en el historial."
)


class ContextProvider(Protocol):
    def get_context_text(self, tenant_id: str) -> str: ...


def substitute_placeholders(prompt: str) -> str:
    if DATE_PLACEHOLDER not in prompt:
        return prompt
    return prompt.replace(DATE_PLACEHOLDER, dates.formatted())


def specialty_block(
    routed_agent: Optional[AgentDefinition],
    routing_decision: Optional[RoutingDecision],
    base_agent_slug: str,
) -> Optional[str]:
    """Only for a different agent picked with high or medium confidence."""
    if routed_agent is None or routing_decision is None:
        return None
    if routed_agent.slug == base_agent_slug or routing_decision.confidence == "low":
        return None
    header = f"\n## 🎯 MODO ACTIVO: {routed_agent.name}\nEspecialidad detectada por el sistema."
    prompt = routed_agent.merged_system_prompt.strip()
    if not prompt:
        return header
    return f"{header}\n{substitute_placeholders(prompt)}"


def compose(
    tenant_id: str,
    agent_system_prompt: str,
    routed_agent: Optional[AgentDefinition],
    routing_decision: Optional[RoutingDecision],
    base_agent_slug: str,
    channel: str,
    user_id: Optional[str] = None,
    *,
    context_provider: Optional[ContextProvider] = None,
) -> str:
    blocks = []

    context_text = context_provider.get_context_text(tenant_id).strip() if context_provider else ""
    if context_text:
        blocks.append(f"CONTEXTO DE LA EMPRESA:\n{context_text}\n---")

    blocks.append(substitute_placeholders(agent_system_prompt or DEFAULT_PROMPT))

    specialty = specialty_block(routed_agent, routing_decision, base_agent_slug)
    if specialty:
        blocks.append(specialty)

    channel_rule = CHANNEL_RULES.get(channel)
    if channel_rule:
        blocks.append(channel_rule)

    blocks.extend([EFFICIENCY_RULES, PLANNING_RULES, TOOL_MESSAGING_RULES, CONTEXT_PERSISTENCE_RULES])
    return "\n\n".join(blocks)
