from __future__ import annotations

import asyncio

import pytest

from helpers import FakeDirectory, ScriptedProvider, agent, env_vars
from switchboard import router
from switchboard.providers import ModelTransportError


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory(
        [
            agent("tuqui", description="Asistente general"),
            agent("tuqui-erp", ["ventas", "vendimos", "factura", "stock", "cliente"], description="Datos del ERP"),
            agent("tuqui-legal", ["contrato", "ley", "despido"], description="Consultas legales", rag_enabled=True),
            agent("tuqui-contador", ["iva", "declaración jurada", "impuestos"], description="Impuestos"),
        ]
    )


def _route(message, directory, **kwargs):
    kwargs.setdefault("default_slug", "tuqui")
    return asyncio.run(router.route("acme", message, kwargs.pop("history", []), directory, **kwargs))


def test_parse_mention_strips_known_slug() -> None:
    slug, rest = router.parse_mention("@tuqui-legal ¿puedo despedir sin causa?", ["tuqui", "tuqui-legal"])
    assert slug == "tuqui-legal"
    assert rest == "¿puedo despedir sin causa?"


def test_parse_mention_ignores_unknown_slug() -> None:
    message = "@nadie hola"
    assert router.parse_mention(message, ["tuqui"]) == (None, message)
    assert router.parse_mention("hola @tuqui", ["tuqui"]) == (None, "hola @tuqui")


def test_score_keywords_weights_phrases_by_word_count(directory: FakeDirectory) -> None:
    scores = router.score_keywords("Necesito la declaración jurada de IVA", directory.list_active("acme"))
    top_slug, top_score, matched = scores[0]
    assert top_slug == "tuqui-contador"
    assert top_score == 3
    assert set(matched) == {"iva", "declaración jurada"}


def test_tier_one_picks_clear_winner(directory: FakeDirectory) -> None:
    decision = router.tier_one("¿Cuánto vendimos este mes?", directory.list_active("acme"))
    assert decision is not None
    assert decision.agent_slug == "tuqui-erp"
    assert decision.confidence == "high"
    assert decision.reason.startswith("keywords:")


def test_tier_one_returns_none_on_tie(directory: FakeDirectory) -> None:
    assert router.tier_one("las ventas del contrato", directory.list_active("acme")) is None


def test_tier_one_respects_margin(directory: FakeDirectory) -> None:
    agents = directory.list_active("acme")
    assert router.tier_one("ventas y stock del contrato", agents, margin=1) is not None
    assert router.tier_one("ventas y stock del contrato", agents, margin=2) is None


def test_route_is_idempotent_for_keyword_decisions(directory: FakeDirectory) -> None:
    first = _route("¿Cuánto vendimos este mes?", directory)
    second = _route("¿Cuánto vendimos este mes?", directory)
    assert first == second
    assert first.agent_slug == "tuqui-erp"


def test_mention_overrides_keywords(directory: FakeDirectory) -> None:
    provider = ScriptedProvider(json_answer={"agent_slug": "tuqui-erp", "confidence": "high", "reason": "x"})
    decision = _route("¿cuánto vendimos?", directory, mentioned_slug="tuqui-legal", provider=provider)
    assert decision.agent_slug == "tuqui-legal"
    assert decision.confidence == "high"
    assert decision.reason == "explicit selection"
    assert provider.json_prompts == []


def test_unknown_mention_falls_through_to_keywords(directory: FakeDirectory) -> None:
    decision = _route("¿cuánto vendimos?", directory, mentioned_slug="tuqui-marketing")
    assert decision.agent_slug == "tuqui-erp"


def test_tier_two_classifies_when_keywords_do_not_decide(directory: FakeDirectory) -> None:
    provider = ScriptedProvider(json_answer={"agent_slug": "tuqui-legal", "confidence": "medium", "reason": "laboral"})
    decision = _route(
        "me quieren echar del trabajo",
        directory,
        provider=provider,
        history=["hola", "tengo un problema con mi jefe"],
    )
    assert decision.agent_slug == "tuqui-legal"
    assert decision.confidence == "medium"
    assert decision.reason == "laboral"

    schema = provider.json_schemas[0]
    assert schema["properties"]["agent_slug"]["enum"] == ["tuqui", "tuqui-erp", "tuqui-legal", "tuqui-contador"]
    prompt = provider.json_prompts[0]
    assert "Mensaje actual: me quieren echar del trabajo" in prompt
    assert "Contexto previo: hola | tengo un problema con mi jefe" in prompt
    assert "**tuqui-legal**: Consultas legales [tiene documentos internos]" in prompt


def test_tier_two_history_window(directory: FakeDirectory) -> None:
    provider = ScriptedProvider(json_answer={"agent_slug": "tuqui", "confidence": "low", "reason": "general"})
    _route("algo", directory, provider=provider, history=["uno", "dos", "tres", "cuatro"], window=2)
    assert "Contexto previo: tres | cuatro" in provider.json_prompts[0]


def test_tier_two_unknown_slug_falls_back(directory: FakeDirectory) -> None:
    provider = ScriptedProvider(json_answer={"agent_slug": "tuqui-marketing", "confidence": "high", "reason": "x"})
    decision = _route("algo raro", directory, provider=provider)
    assert decision.agent_slug == "tuqui"
    assert decision.confidence == "low"
    assert decision.reason == "Agente no encontrado, usando fallback"


def test_tier_two_failure_falls_back(directory: FakeDirectory) -> None:
    provider = ScriptedProvider(json_answer=ModelTransportError("boom", retryable=True))
    decision = _route("algo raro", directory, provider=provider)
    assert decision.agent_slug == "tuqui"
    assert decision.confidence == "low"
    assert decision.reason == "Error en routing, usando fallback"


def test_tier_two_invalid_confidence_becomes_medium(directory: FakeDirectory) -> None:
    provider = ScriptedProvider(json_answer={"agent_slug": "tuqui-erp", "confidence": "seguro", "reason": ""})
    decision = _route("algo raro", directory, provider=provider)
    assert decision.agent_slug == "tuqui-erp"
    assert decision.confidence == "medium"


def test_no_provider_falls_back_to_default(directory: FakeDirectory) -> None:
    decision = _route("buen día", directory)
    assert decision.agent_slug == "tuqui"
    assert decision.confidence == "low"


def test_single_agent_is_selected_without_classification() -> None:
    provider = ScriptedProvider(json_answer={"agent_slug": "otro", "confidence": "high", "reason": ""})
    decision = _route("lo que sea", FakeDirectory([agent("tuqui")]), provider=provider)
    assert decision.agent_slug == "tuqui"
    assert decision.confidence == "high"
    assert provider.json_prompts == []


def test_empty_directory_uses_default() -> None:
    decision = _route("hola", FakeDirectory([]))
    assert decision.agent_slug == "tuqui"
    assert decision.confidence == "low"


def test_router_margin_from_environment(directory: FakeDirectory) -> None:
    with env_vars({"ROUTER_MARGIN": "3"}):
        decision = _route("ventas y stock del contrato", directory)
    assert decision.confidence == "low"
