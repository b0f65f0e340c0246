from __future__ import annotations

import asyncio
import json

import pytest

from helpers import ScriptedProvider, SlowProvider, skill_context, text_turn, tool_turn
from switchboard.generation import (
    FALLBACK_ANSWER,
    FORCE_TEXT_INSTRUCTION,
    GenerationLoop,
    GenerationState,
    IllegalTransition,
    StateMachine,
    ThinkingChannel,
    ThinkingStep,
    generate,
    get_tool_source,
    summarize_result,
    truncate_repetition_loop,
)
from switchboard.models import ToolCallRecord
from switchboard.providers import ModelTransportError, ModelRequest, ModelTurn, ProviderUsage, ToolCall
from switchboard.skills import SkillRegistry
from switchboard.skills.types import Result, Skill

ECHO_SCHEMA = {"type": "object", "properties": {"value": {"type": "string"}}, "additionalProperties": False}


async def _echo(params, context):
    return Result.ok({"summary": f"eco {params.get('value', '')}", "total": 10})


async def _slow_echo(params, context):
    await asyncio.sleep(0.05)
    return Result.ok({"summary": "lento"})


def _skills():
    return [
        Skill(name="get_sales_echo", description="eco", tool="erp", input_schema=ECHO_SCHEMA, execute=_echo, integration=None),
        Skill(name="slow_tool", description="lento", tool="erp", input_schema=ECHO_SCHEMA, execute=_slow_echo, integration=None),
        Skill(name="erp_locked", description="con credenciales", tool="erp", input_schema=ECHO_SCHEMA, execute=_echo),
    ]


def _registry() -> SkillRegistry:
    return SkillRegistry(_skills())


def _generate(provider, *, registry=None, context=None, skills=None, **kwargs):
    registry = registry or _registry()
    skills = registry.filtered(["erp"]) if skills is None else skills
    return asyncio.run(
        generate(
            "Sos Tuqui.",
            [{"role": "user", "content": "¿Cuánto vendimos?"}],
            skills,
            provider=provider,
            registry=registry,
            skill_context=context or skill_context(),
            **kwargs,
        )
    )


def _always_tools(request: ModelRequest) -> ModelTurn:
    if request.tools:
        n = sum(1 for m in request.messages if m["role"] == "assistant")
        return tool_turn(ToolCall(id=f"call-{n}", name="get_sales_echo", arguments={"value": str(n)}))
    return text_turn("Este mes vendimos $ 10.")


def test_tool_rounds_are_bounded_then_text_is_forced() -> None:
    provider = ScriptedProvider(default=_always_tools)  # type: ignore[arg-type]
    result = _generate(provider, max_rounds=3)

    assert len(provider.requests) == 4
    assert result.rounds == 3
    assert result.forced_text is True
    assert result.text == "Este mes vendimos $ 10."
    assert [r.tool_name for r in result.tool_calls] == ["get_sales_echo"] * 3

    forced = provider.requests[-1]
    assert forced.tools == []
    assert forced.tool_choice == "none"
    assert forced.messages[-1] == {"role": "user", "content": FORCE_TEXT_INSTRUCTION}
    tool_turns = [m for m in forced.messages if m["role"] == "tool"]
    assert [m["tool_call_id"] for m in tool_turns] == ["call-0", "call-1", "call-2"]
    assert json.loads(tool_turns[0]["content"]) == {"success": True, "data": {"summary": "eco 0", "total": 10}}


def test_plain_answer_needs_no_forced_call() -> None:
    provider = ScriptedProvider([text_turn("Hola, ¿en qué te ayudo?", tokens=42)])
    result = _generate(provider)
    assert len(provider.requests) == 1
    assert result.forced_text is False
    assert result.text == "Hola, ¿en qué te ayudo?"
    assert result.usage.total_tokens == 42
    assert result.tool_calls == []
    assert result.trail[-2:] == [GenerationState.VALIDATING, GenerationState.DONE]


def test_empty_answers_fall_back_to_apology() -> None:
    provider = ScriptedProvider([text_turn(""), text_turn("   ")])
    result = _generate(provider)
    assert len(provider.requests) == 2
    assert result.forced_text is True
    assert result.text == FALLBACK_ANSWER


def test_failed_skill_is_reported_to_the_model() -> None:
    provider = ScriptedProvider(
        [
            tool_turn(ToolCall(id="c1", name="erp_locked", arguments={})),
            text_turn("No tengo acceso al ERP de la empresa."),
        ]
    )
    result = _generate(provider, context=skill_context(with_erp=False))

    assert result.text == "No tengo acceso al ERP de la empresa."
    assert result.tool_calls[0].error == "ERP credentials not configured for this tenant"
    tool_message = provider.requests[1].messages[-1]
    assert tool_message["role"] == "tool"
    assert json.loads(tool_message["content"])["error"]["code"] == "AUTH_ERROR"


def test_unknown_tool_is_reported_not_raised() -> None:
    provider = ScriptedProvider([tool_turn(ToolCall(id="c1", name="get_weather")), text_turn("Listo.")])
    result = _generate(provider)
    record = result.tool_calls[0]
    assert record.error == "Tool get_weather not found"
    content = json.loads(provider.requests[1].messages[-1]["content"])
    assert content["error"]["message"] == "Tool get_weather no está disponible."


def test_tool_outside_agent_allow_list_is_rejected() -> None:
    registry = _registry()
    provider = ScriptedProvider([tool_turn(ToolCall(id="c1", name="slow_tool")), text_turn("Listo.")])
    result = _generate(provider, registry=registry, skills=registry.filtered(["get_sales_echo"]))
    assert result.tool_calls[0].error == "Tool slow_tool not found"


def test_concurrent_calls_keep_call_order() -> None:
    provider = ScriptedProvider(
        [
            tool_turn(
                ToolCall(id="a", name="slow_tool", arguments={"value": "1"}),
                ToolCall(id="b", name="get_sales_echo", arguments={"value": "2"}),
            ),
            text_turn("Listo."),
        ]
    )
    result = _generate(provider)
    assert [r.tool_name for r in result.tool_calls] == ["slow_tool", "get_sales_echo"]
    tool_ids = [m["tool_call_id"] for m in provider.requests[1].messages if m["role"] == "tool"]
    assert tool_ids == ["a", "b"]


class CrashingRegistry(SkillRegistry):
    """Lets a non-Result exception escape `execute` for one tool."""

    async def execute(self, name, raw_input, context):
        if name == "get_sales_echo":
            raise RuntimeError("conexión perdida")
        return await super().execute(name, raw_input, context)


def test_crashed_tool_does_not_stop_its_siblings() -> None:
    registry = CrashingRegistry(_skills())
    provider = ScriptedProvider(
        [
            tool_turn(
                ToolCall(id="a", name="get_sales_echo", arguments={"value": "1"}),
                ToolCall(id="b", name="slow_tool", arguments={}),
            ),
            text_turn("Listo."),
        ]
    )
    result = _generate(provider, registry=registry)

    crashed, sibling = result.tool_calls
    assert crashed.tool_name == "get_sales_echo"
    assert crashed.error == "conexión perdida"
    assert sibling.tool_name == "slow_tool"
    assert sibling.error is None
    contents = [json.loads(m["content"]) for m in provider.requests[1].messages if m["role"] == "tool"]
    assert contents[0] == {"success": False, "error": {"code": "API_ERROR", "message": "conexión perdida"}}
    assert contents[1] == {"success": True, "data": {"summary": "lento"}}
    assert result.text == "Listo."


class Rendezvous:
    """Each call waits until every expected call has started."""

    def __init__(self, expected: int):
        self.expected = expected
        self.started = 0
        self.event = None

    async def __call__(self, params, context):
        if self.event is None:
            self.event = asyncio.Event()
        self.started += 1
        if self.started >= self.expected:
            self.event.set()
        try:
            await asyncio.wait_for(self.event.wait(), timeout=1.0)
        except asyncio.TimeoutError:
            return Result.fail("API_ERROR", "ran alone")
        return Result.ok({"summary": f"juntos {params.get('value')}"})


def test_calls_in_one_round_overlap_in_time() -> None:
    meeting = Rendezvous(expected=2)
    registry = SkillRegistry(
        [
            Skill(name="get_sales_left", description="a", tool="erp", input_schema=ECHO_SCHEMA, execute=meeting, integration=None),
            Skill(name="get_sales_right", description="b", tool="erp", input_schema=ECHO_SCHEMA, execute=meeting, integration=None),
        ]
    )
    provider = ScriptedProvider(
        [
            tool_turn(
                ToolCall(id="l", name="get_sales_left", arguments={"value": "1"}),
                ToolCall(id="r", name="get_sales_right", arguments={"value": "2"}),
            ),
            text_turn("Listo."),
        ]
    )
    result = _generate(provider, registry=registry)

    assert meeting.started == 2
    assert [r.error for r in result.tool_calls] == [None, None]
    assert [r.tool_name for r in result.tool_calls] == ["get_sales_left", "get_sales_right"]


def test_transient_transport_failure_is_retried_once() -> None:
    provider = ScriptedProvider([ModelTransportError("503", retryable=True), text_turn("Respuesta.")])
    result = _generate(provider)
    assert len(provider.requests) == 2
    assert result.text == "Respuesta."
    assert result.forced_text is False


def test_persistent_transport_failure_still_answers() -> None:
    provider = ScriptedProvider(
        [
            ModelTransportError("503", retryable=True),
            ModelTransportError("503", retryable=True),
            ModelTransportError("503", retryable=True),
        ]
    )
    result = _generate(provider)
    assert result.text == FALLBACK_ANSWER
    assert result.forced_text is True


def test_non_retryable_failure_goes_to_forced_text() -> None:
    provider = ScriptedProvider([ModelTransportError("400", retryable=False), text_turn("Con lo que tengo: nada.")])
    result = _generate(provider)
    assert len(provider.requests) == 2
    assert result.text == "Con lo que tengo: nada."


def test_thinking_events_and_summaries_when_streaming() -> None:
    steps, summaries = [], []
    provider = ScriptedProvider(
        [
            ModelTurn(
                tool_calls=[ToolCall(id="c1", name="get_sales_echo", arguments={})],
                thoughts=["Busco las ventas. "],
                usage=ProviderUsage(total_tokens=5, thinking_tokens=3),
            ),
            text_turn("Listo.", thoughts=["Armo la respuesta."]),
        ]
    )
    result = _generate(provider, streaming=True, on_step=steps.append, on_summary=summaries.append)

    assert [(s.tool, s.source, s.status) for s in steps] == [
        ("get_sales_echo", "erp", "running"),
        ("get_sales_echo", "erp", "done"),
    ]
    assert steps[1].duration_ms is not None
    assert summaries == ["Busco las ventas. ", "Armo la respuesta."]
    assert result.thinking_summary == "Busco las ventas. Armo la respuesta."
    assert result.usage.thinking_tokens == 3
    assert all(r.include_thoughts for r in provider.requests)


def test_summaries_are_not_delivered_without_streaming() -> None:
    summaries = []
    provider = ScriptedProvider([text_turn("Listo.", thoughts=["pensando"])])
    _generate(provider, streaming=False, on_summary=summaries.append)
    assert summaries == []
    assert provider.requests[0].include_thoughts is False


def test_no_events_after_close() -> None:
    steps = []

    async def run():
        loop = GenerationLoop(
            ScriptedProvider([text_turn("Listo.")]),
            _registry(),
            skill_context(),
            channel=ThinkingChannel(on_step=steps.append),
        )
        await loop.run("Sos Tuqui.", [{"role": "user", "content": "hola"}], [])
        await loop.channel.step(ThinkingStep(tool="late", source="general", status="running", started_at=0.0))
        return loop.channel

    channel = asyncio.run(run())
    assert channel.closed
    assert steps == []
    assert channel.delivered == 0


def test_failing_callback_does_not_break_generation() -> None:
    async def broken(step):
        raise RuntimeError("socket closed")

    provider = ScriptedProvider([tool_turn(ToolCall(id="c1", name="get_sales_echo")), text_turn("Listo.")])
    result = _generate(provider, on_step=broken)
    assert result.text == "Listo."


def test_cancellation_marks_failed_and_closes_channel() -> None:
    machine = StateMachine(GenerationState.COMPOSING)
    channel = ThinkingChannel()

    async def run():
        loop = GenerationLoop(SlowProvider(), _registry(), skill_context(), machine=machine, channel=channel)
        await asyncio.wait_for(loop.run("Sos Tuqui.", [{"role": "user", "content": "hola"}], []), timeout=0.05)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(run())
    assert machine.state is GenerationState.FAILED
    assert channel.closed


def test_validation_runs_on_final_text() -> None:
    provider = ScriptedProvider([text_turn("El cliente Carlos Pérez compró $ 1.000.")])
    result = _generate(provider)
    assert result.validation is not None
    assert result.validation.valid is False
    assert any("potential_hallucination" in w for w in result.validation.warnings)
    assert any("missing_source" in w for w in result.validation.warnings)


def test_state_machine_rejects_illegal_transitions() -> None:
    machine = StateMachine()
    with pytest.raises(IllegalTransition):
        machine.advance(GenerationState.DONE)
    machine.advance(GenerationState.COMPOSING)
    machine.fail()
    assert machine.finished
    machine.fail()
    assert machine.trail == [GenerationState.ROUTING, GenerationState.COMPOSING, GenerationState.FAILED]


def test_repetition_loop_is_truncated() -> None:
    intro = " ".join(f"Oración número {i} del informe mensual." for i in range(20))
    repeated = "Esta oración se repite sin parar."
    text = intro + " " + " ".join([repeated] * 4)
    truncated = truncate_repetition_loop(text)
    assert truncated.count(repeated) == 1
    assert truncated.endswith(repeated)
    assert truncate_repetition_loop("Corto.") == "Corto."


def test_tool_sources() -> None:
    assert get_tool_source("get_sales_total") == "erp"
    assert get_tool_source("get_accounts_payable") == "erp"
    assert get_tool_source("get_purchases_by_supplier") == "erp"
    assert get_tool_source("search_knowledge_base") == "rag"
    assert get_tool_source("recall_memory") == "general"
    assert get_tool_source("unknown_tool") == "general"


def test_summarize_result_is_capped() -> None:
    assert summarize_result({"success": False, "error": {"code": "AUTH_ERROR", "message": "sin credenciales"}}) == (
        "AUTH_ERROR: sin credenciales"
    )
    long = summarize_result({"success": True, "data": {"rows": ["x" * 100] * 20}})
    assert len(long) == 500
    record = ToolCallRecord(tool_name="t", result_summary=long)
    assert record.error is None
