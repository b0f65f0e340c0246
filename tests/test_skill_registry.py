from __future__ import annotations

import asyncio

import pytest

from helpers import skill_context
from switchboard.skills import SkillNotFound, SkillRegistry, get_registry
from switchboard.skills.errors import ApiError, AuthenticationError
from switchboard.skills.registry import SkillRegistrationError
from switchboard.skills.types import Result, Skill


def _skill(name: str, execute, *, tool: str = "test", integration=None, schema=None, priority: int = 0) -> Skill:
    return Skill(
        name=name,
        description=f"{name} skill",
        tool=tool,
        input_schema=schema or {"type": "object", "properties": {}, "additionalProperties": True},
        execute=execute,
        integration=integration,
        priority=priority,
    )


async def _ok(params, context):
    return Result.ok({"echo": params, "tenant": context.tenant_id})


def test_builtin_catalog() -> None:
    registry = get_registry()
    assert len(registry) == 15
    assert "get_sales_total" in registry
    assert registry.tools() == ["erp", "memory", "rag"]
    for name in registry.names():
        skill = registry.get(name)
        assert skill.description
        assert skill.input_schema["type"] == "object"


def test_filtered_by_category_and_name() -> None:
    registry = get_registry()
    by_category = registry.filtered(["erp"])
    assert len(by_category) == 12
    assert all(s.tool == "erp" for s in by_category)
    assert [s.name for s in by_category[:2]] == ["get_product_stock", "get_sales_total"]

    single = registry.filtered(["search_customers", "nope"])
    assert [s.name for s in single] == ["search_customers"]
    assert registry.filtered([]) == []


def test_unknown_skill_raises() -> None:
    with pytest.raises(SkillNotFound):
        asyncio.run(get_registry().execute("get_weather", {}, skill_context()))


def test_invalid_input_is_validation_error() -> None:
    result = asyncio.run(get_registry().execute("get_sales_total", {"state": "bogus"}, skill_context()))
    assert not result.succeeded
    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.details[0]["path"] == ["state"]


def test_missing_credentials_is_auth_error() -> None:
    result = asyncio.run(get_registry().execute("get_sales_total", {}, skill_context(with_erp=False)))
    assert result.error.code == "AUTH_ERROR"
    assert result.to_dict() == {
        "success": False,
        "error": {"code": "AUTH_ERROR", "message": "ERP credentials not configured for this tenant"},
    }


def test_defaults_are_applied_before_execution() -> None:
    seen = {}

    async def capture(params, context):
        seen.update(params)
        return Result.ok({})

    schema = {
        "type": "object",
        "properties": {"limit": {"type": "integer", "default": 10}, "q": {"type": "string"}},
        "additionalProperties": False,
    }
    registry = SkillRegistry([_skill("capture", capture, schema=schema)])
    asyncio.run(registry.execute("capture", {"q": "x"}, skill_context()))
    assert seen == {"limit": 10, "q": "x"}


@pytest.mark.parametrize(
    "exc, code, message",
    [
        (RuntimeError("boom"), "API_ERROR", "boom"),
        (RuntimeError("RPC error: Invalid field 'foo' on model"), "API_ERROR", "Invalid field 'foo' on model"),
        (ApiError("ERP HTTP error: 503", retryable=True), "API_ERROR", "ERP HTTP error: 503"),
        (AuthenticationError("ERP"), "AUTH_ERROR", "ERP credentials not configured or invalid"),
    ],
)
def test_exceptions_become_results(exc, code, message) -> None:
    async def explode(params, context):
        raise exc

    registry = SkillRegistry([_skill("explode", explode)])
    result = asyncio.run(registry.execute("explode", {}, skill_context()))
    assert result.error.code == code
    assert result.error.message == message


def test_non_result_return_is_api_error() -> None:
    async def wrong(params, context):
        return {"total": 1}

    result = asyncio.run(SkillRegistry([_skill("wrong", wrong)]).execute("wrong", {}, skill_context()))
    assert result.error.code == "API_ERROR"


def test_success_serialization() -> None:
    registry = SkillRegistry([_skill("ok", _ok)])
    result = asyncio.run(registry.execute("ok", {"a": 1}, skill_context()))
    assert result.to_dict() == {"success": True, "data": {"echo": {"a": 1}, "tenant": "acme"}}


def test_duplicate_names_are_rejected() -> None:
    with pytest.raises(SkillRegistrationError):
        SkillRegistry([_skill("dup", _ok), _skill("dup", _ok)])


def test_non_object_schema_is_rejected() -> None:
    with pytest.raises(SkillRegistrationError):
        SkillRegistry([_skill("bad", _ok, schema={"type": "array"})])


def test_result_requires_exactly_one_side() -> None:
    with pytest.raises(ValueError):
        Result()
    with pytest.raises(ValueError):
        Result.fail("NOT_A_CODE", "x")
