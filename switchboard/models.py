"""
Data models shared by the orchestration pipeline.

Defines AgentDefinition, RoutingDecision, ConversationMessage, ToolCallRecord,
Usage and ChatResponse. Do not duplicate these definitions elsewhere.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Confidence = Literal["high", "medium", "low"]
Channel = Literal["web", "messaging", "voice"]
Role = Literal["user", "assistant", "system"]

# Inbound channel names accepted by the HTTP surface and mapped onto Channel.
CHANNEL_ALIASES: Dict[str, str] = {
    "web": "web",
    "messaging": "messaging",
    "whatsapp": "messaging",
    "voice": "voice",
}


def normalize_channel(value: Optional[str]) -> str:
    """Map an inbound channel name onto a Channel; unknown values fall back to web."""
    if not value:
        return "web"
    return CHANNEL_ALIASES.get(str(value).strip().lower(), "web")


class AgentDefinition(BaseModel):
    """A specialist persona: instructions plus the skills it may call."""

    slug: str
    name: str
    description: str = ""
    system_prompt: str = ""
    custom_instructions: Optional[str] = None
    tool_names: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    rag_enabled: bool = False
    is_active: bool = True
    template_origin_id: Optional[str] = None

    @property
    def merged_system_prompt(self) -> str:
        """System prompt plus tenant-specific instructions, when any."""
        base = self.system_prompt or ""
        extra = (self.custom_instructions or "").strip()
        if not extra:
            return base
        return f"{base}\n\nINSTRUCCIONES ADICIONALES:\n{extra}"

    @property
    def is_template_derived(self) -> bool:
        return self.template_origin_id is not None


class RoutingDecision(BaseModel):
    agent_slug: str
    confidence: Confidence
    reason: str = ""


class ToolCallRecord(BaseModel):
    """One skill invocation captured after its generation round completed."""

    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result_summary: str = ""
    duration_ms: Optional[float] = None
    error: Optional[str] = None


class ConversationMessage(BaseModel):
    role: Role
    content: str
    tool_calls: Optional[List[ToolCallRecord]] = None


class Usage(BaseModel):
    total_tokens: int = 0
    thinking_tokens: Optional[int] = None

    def add(self, total: int, thinking: Optional[int] = None) -> None:
        self.total_tokens += int(total or 0)
        if thinking:
            self.thinking_tokens = (self.thinking_tokens or 0) + int(thinking)


class ValidationReport(BaseModel):
    valid: bool
    score: int = Field(ge=0, le=100)
    warnings: List[str] = Field(default_factory=list)


class ChatResponse(BaseModel):
    """Result of one orchestrated turn."""

    text: str
    tool_calls: Optional[List[ToolCallRecord]] = None
    usage: Usage
    agent_slug: Optional[str] = None
    routing: Optional[RoutingDecision] = None
    validation: Optional[ValidationReport] = None


class ChatRequest(BaseModel):
    """Parsed /chat request body."""

    agent_slug: Optional[str] = None
    messages: List[ConversationMessage]
    channel: str = "web"
    user_email: str
    user_id: Optional[str] = None
    mentioned_agent_slug: Optional[str] = None
