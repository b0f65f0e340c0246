"""
Generation loop: bounded, tool-augmented rounds against the model transport.

States: ROUTING -> COMPOSING -> GENERATING <-> EXECUTING_TOOLS -> VALIDATING -> DONE,
with FAILED reachable from any non-terminal state on a fatal error
(cancellation, deadline, unexpected exceptions). Skill failures are never
fatal; they come back to the model as tool-result turns.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .models import ConversationMessage, ToolCallRecord, Usage, ValidationReport
from .providers import BaseProvider, ModelRequest, ModelTransportError, ModelTurn, ToolCall
from .skills.registry import SkillNotFound, SkillRegistry
from .skills.types import Result, Skill, SkillContext
from . import validator

logger = logging.getLogger("switchboard")

FORCE_TEXT_INSTRUCTION = (
    "Ya tenés toda la información que necesitás de las herramientas anteriores. "
    "Respondé la pregunta original del usuario con esos datos. Sé directo y conciso. "
    "Si no tenés datos suficientes, explicá qué falta."
)
FALLBACK_ANSWER = (
    "Perdón, busqué mucha información pero no logré armar una respuesta. "
    "¿Podés reformular la pregunta o ser más específico?"
)
RESULT_SUMMARY_CHARS = 500


class GenerationState(str, enum.Enum):
    ROUTING = "routing"
    COMPOSING = "composing"
    GENERATING = "generating"
    EXECUTING_TOOLS = "executing_tools"
    VALIDATING = "validating"
    DONE = "done"
    FAILED = "failed"


S = GenerationState
TRANSITIONS: Dict[GenerationState, frozenset] = {
    S.ROUTING: frozenset({S.COMPOSING, S.FAILED}),
    S.COMPOSING: frozenset({S.GENERATING, S.FAILED}),
    # GENERATING -> GENERATING covers the transport retry and the forced-text call.
    S.GENERATING: frozenset({S.GENERATING, S.EXECUTING_TOOLS, S.VALIDATING, S.FAILED}),
    S.EXECUTING_TOOLS: frozenset({S.GENERATING, S.FAILED}),
    S.VALIDATING: frozenset({S.DONE, S.FAILED}),
    S.DONE: frozenset(),
    S.FAILED: frozenset(),
}


class IllegalTransition(RuntimeError):
    pass


class StateMachine:
    """Tracks the request's current state and the trail it took."""

    def __init__(self, start: GenerationState = GenerationState.ROUTING):
        self.state = start
        self.trail: List[GenerationState] = [start]

    def advance(self, target: GenerationState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise IllegalTransition(f"{self.state.value} -> {target.value}")
        self.state = target
        self.trail.append(target)

    def fail(self) -> None:
        if self.state not in (GenerationState.DONE, GenerationState.FAILED):
            self.advance(GenerationState.FAILED)

    @property
    def finished(self) -> bool:
        return not TRANSITIONS[self.state]


# Thinking events


def get_tool_source(tool_name: str) -> str:
    """Which backing source a tool reads from, for progress display."""
    if tool_name in ("recall_memory", "save_memory"):
        return "general"
    erp_prefixes = (
        "get_sales",
        "get_debt",
        "get_overdue",
        "get_product",
        "get_payments",
        "get_purchases",
        "get_accounts",
        "get_top",
        "get_low_stock",
        "search_customers",
        "compare_sales",
    )
    if tool_name.startswith(erp_prefixes):
        return "erp"
    if "knowledge" in tool_name or "document" in tool_name:
        return "rag"
    return "general"


@dataclass
class ThinkingStep:
    tool: str
    source: str
    status: str
    started_at: float
    duration_ms: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "tool": self.tool,
            "source": self.source,
            "status": self.status,
            "started_at": self.started_at,
        }
        if self.duration_ms is not None:
            out["duration_ms"] = self.duration_ms
        if self.error:
            out["error"] = self.error
        return out


Callback = Callable[[Any], Union[None, Awaitable[None]]]


class ThinkingChannel:
    """
    Per-request observer for progress events.

    Events are delivered one at a time in the order they are emitted; once
    `close()` is called every later event is dropped.
    """

    def __init__(self, on_step: Optional[Callback] = None, on_summary: Optional[Callback] = None):
        self._on_step = on_step
        self._on_summary = on_summary
        self._lock = asyncio.Lock()
        self._closed = False
        self.delivered = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def _deliver(self, callback: Optional[Callback], event: Any) -> None:
        if callback is None:
            return
        async with self._lock:
            if self._closed:
                return
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("thinking callback failed error=%s", exc)
            self.delivered += 1

    async def step(self, step: ThinkingStep) -> None:
        await self._deliver(self._on_step, step)

    async def summary(self, text: str) -> None:
        await self._deliver(self._on_summary, text)


# Text helpers

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?✨🦷🚀])\s+")


def truncate_repetition_loop(text: str) -> str:
    """Collapse a tail of 3+ identical sentences into one."""
    if len(text) < 500:
        return text
    sentences = _SENTENCE_SPLIT.split(text)
    if len(sentences) < 5:
        return text
    last = sentences[-1].strip()
    if len(last) < 20:
        return text
    repeats = 0
    for sentence in reversed(sentences):
        if sentence.strip() != last:
            break
        repeats += 1
    if repeats < 3:
        return text
    logger.warning("repetition loop detected repeats=%s", repeats)
    return " ".join(sentences[: len(sentences) - repeats + 1])


def summarize_result(result: Dict[str, Any]) -> str:
    """Short description of a tool result, capped at RESULT_SUMMARY_CHARS."""
    if not result.get("success"):
        error = result.get("error") or {}
        text = f"{error.get('code', 'ERROR')}: {error.get('message', '')}"
    else:
        data = result.get("data")
        if isinstance(data, dict):
            parts = [str(data["summary"])] if data.get("summary") else []
            for key in ("total", "count", "grand_total"):
                if key in data and data[key] is not None:
                    parts.append(f"{key}={data[key]}")
            if data.get("grouped"):
                parts.append(f"grouped={len(data['grouped'])}")
            text = "; ".join(parts) if parts else json.dumps(data, ensure_ascii=False, default=str)
        else:
            text = json.dumps(data, ensure_ascii=False, default=str)
    return text[:RESULT_SUMMARY_CHARS]


def history_to_messages(history: Sequence[Union[ConversationMessage, Dict[str, Any]]]) -> List[Dict[str, Any]]:
    messages = []
    for item in history:
        if isinstance(item, ConversationMessage):
            messages.append({"role": item.role, "content": item.content})
        else:
            messages.append({"role": item.get("role", "user"), "content": item.get("content", "")})
    return messages


@dataclass
class GenerationResult:
    text: str
    usage: Usage
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    validation: Optional[ValidationReport] = None
    rounds: int = 0
    forced_text: bool = False
    thinking_summary: str = ""
    trail: List[GenerationState] = field(default_factory=list)


class GenerationLoop:
    """
    One instance per request. Holds the running conversation for the rounds
    of that request and nothing else.
    """

    def __init__(
        self,
        provider: BaseProvider,
        registry: SkillRegistry,
        skill_context: SkillContext,
        *,
        model: Optional[str] = None,
        machine: Optional[StateMachine] = None,
        channel: Optional[ThinkingChannel] = None,
    ):
        self.provider = provider
        self.registry = registry
        self.skill_context = skill_context
        self.model = model
        self.machine = machine or StateMachine(GenerationState.GENERATING)
        self.channel = channel or ThinkingChannel()
        self.usage = Usage()
        self.records: List[ToolCallRecord] = []
        self._thoughts: List[str] = []

    async def _call_model(self, request: ModelRequest) -> ModelTurn:
        """One transport call with a single retry on a transient failure."""
        try:
            turn = await self.provider.complete(request)
        except ModelTransportError as exc:
            if not exc.retryable:
                raise
            logger.warning("model transport failed, retrying once error=%s", exc)
            self.machine.advance(GenerationState.GENERATING)
            turn = await self.provider.complete(request)
        self.usage.add(turn.usage.total_tokens, turn.usage.thinking_tokens)
        for thought in turn.thoughts:
            self._thoughts.append(thought)
            await self.channel.summary(thought)
        return turn

    async def _run_tool(self, call: ToolCall, allowed: Dict[str, Skill]) -> Tuple[Dict[str, Any], ToolCallRecord]:
        started = time.time()
        source = get_tool_source(call.name)
        await self.channel.step(ThinkingStep(tool=call.name, source=source, status="running", started_at=started))

        error: Optional[str] = None
        if call.name not in allowed:
            result = {"success": False, "error": {"code": "API_ERROR", "message": f"Tool {call.name} no está disponible."}}
            error = f"Tool {call.name} not found"
        else:
            try:
                outcome = await self.registry.execute(call.name, call.arguments, self.skill_context)
            except SkillNotFound as exc:
                outcome = Result.fail("API_ERROR", str(exc))
            result = outcome.to_dict()
            if not outcome.succeeded:
                error = outcome.error.message

        duration_ms = round((time.time() - started) * 1000.0, 1)
        await self.channel.step(
            ThinkingStep(
                tool=call.name,
                source=source,
                status="error" if error else "done",
                started_at=started,
                duration_ms=duration_ms,
                error=error,
            )
        )
        record = ToolCallRecord(
            tool_name=call.name,
            args=dict(call.arguments),
            result_summary=summarize_result(result),
            duration_ms=duration_ms,
            error=error,
        )
        return result, record

    async def _execute_round(self, calls: List[ToolCall], allowed: Dict[str, Skill]) -> List[Dict[str, Any]]:
        """Run every call of the round concurrently; records keep the model's call order."""
        outcomes = await asyncio.gather(*(self._run_tool(c, allowed) for c in calls), return_exceptions=True)
        turns = []
        for call, outcome in zip(calls, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning("tool crashed name=%s error=%s", call.name, outcome)
                result = {"success": False, "error": {"code": "API_ERROR", "message": str(outcome)}}
                record = ToolCallRecord(
                    tool_name=call.name, args=dict(call.arguments), result_summary=summarize_result(result), error=str(outcome)
                )
            else:
                result, record = outcome
            self.records.append(record)
            turns.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": json.dumps(result, ensure_ascii=False, default=str),
                }
            )
        return turns

    async def run(
        self,
        system_text: str,
        history: Sequence[Union[ConversationMessage, Dict[str, Any]]],
        skills: Sequence[Skill],
        *,
        max_rounds: int = 5,
        thinking_level: str = "medium",
        include_thoughts: bool = False,
    ) -> GenerationResult:
        machine = self.machine
        if machine.state is not GenerationState.GENERATING:
            machine.advance(GenerationState.GENERATING)

        try:
            messages = history_to_messages(history)
            allowed = {s.name: s for s in skills}
            signatures = [s.signature() for s in skills]
            text = ""
            rounds = 0
            forced = False
            needs_forced_text = True

            while rounds < max_rounds:
                request = ModelRequest(
                    system=system_text,
                    messages=list(messages),
                    tools=signatures,
                    tool_choice="auto" if signatures else "none",
                    thinking_level=thinking_level,
                    include_thoughts=include_thoughts,
                    model=self.model,
                )
                try:
                    turn = await self._call_model(request)
                except ModelTransportError as exc:
                    logger.warning("model transport gave up round=%s error=%s", rounds + 1, exc)
                    break

                if not turn.tool_calls:
                    text = turn.text.strip()
                    needs_forced_text = not text
                    break

                rounds += 1
                machine.advance(GenerationState.EXECUTING_TOOLS)
                messages.append(
                    {
                        "role": "assistant",
                        "content": turn.text or "",
                        "tool_calls": [{"id": c.id, "name": c.name, "arguments": c.arguments} for c in turn.tool_calls],
                    }
                )
                messages.extend(await self._execute_round(turn.tool_calls, allowed))
                machine.advance(GenerationState.GENERATING)

            if needs_forced_text:
                forced = True
                logger.info("forcing text answer rounds=%s", rounds)
                machine.advance(GenerationState.GENERATING)
                messages.append({"role": "user", "content": FORCE_TEXT_INSTRUCTION})
                request = ModelRequest(
                    system=system_text,
                    messages=list(messages),
                    tools=[],
                    tool_choice="none",
                    thinking_level=thinking_level,
                    include_thoughts=include_thoughts,
                    model=self.model,
                )
                try:
                    turn = await self._call_model(request)
                    text = turn.text.strip()
                except ModelTransportError as exc:
                    logger.warning("forced text call failed error=%s", exc)
                    text = ""

            text = truncate_repetition_loop(text)
            if not text:
                logger.warning("empty final answer, using fallback rounds=%s", rounds)
                text = FALLBACK_ANSWER

            self.channel.close()
            machine.advance(GenerationState.VALIDATING)
            had_data = any(r.error is None for r in self.records)
            report = validator.validate(text, had_successful_tool=had_data)
            machine.advance(GenerationState.DONE)
        except BaseException:
            self.channel.close()
            machine.fail()
            raise

        return GenerationResult(
            text=text,
            usage=self.usage,
            tool_calls=list(self.records),
            validation=report,
            rounds=rounds,
            forced_text=forced,
            thinking_summary="".join(self._thoughts),
            trail=list(machine.trail),
        )


async def generate(
    system_text: str,
    history: Sequence[Union[ConversationMessage, Dict[str, Any]]],
    skills: Sequence[Skill],
    *,
    provider: BaseProvider,
    registry: SkillRegistry,
    skill_context: SkillContext,
    max_rounds: int = 5,
    thinking_level: str = "medium",
    streaming: bool = False,
    on_step: Optional[Callback] = None,
    on_summary: Optional[Callback] = None,
    model: Optional[str] = None,
    machine: Optional[StateMachine] = None,
) -> GenerationResult:
    """Run one generation; thought summaries are requested only when streaming."""
    loop = GenerationLoop(
        provider,
        registry,
        skill_context,
        model=model,
        machine=machine,
        channel=ThinkingChannel(on_step=on_step, on_summary=on_summary if streaming else None),
    )
    return await loop.run(
        system_text,
        history,
        skills,
        max_rounds=max_rounds,
        thinking_level=thinking_level,
        include_thoughts=streaming,
    )
