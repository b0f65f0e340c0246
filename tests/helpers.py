"""Test doubles shared by the test modules."""

from __future__ import annotations

import asyncio
import os
from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from switchboard.models import AgentDefinition
from switchboard.providers import BaseProvider, ModelRequest, ModelTurn, ProviderResult, ProviderUsage, ToolCall
from switchboard.skills.types import ErpCredentials, SkillContext, TenantCredentials

ERP_CREDS = ErpCredentials(url="https://erp.example.com", db="acme", username="bot@acme.com", api_key="secret")


@contextmanager
def env_vars(env: Dict[str, str]):
    """
    Temporarily set environment variables for a test.

    Restores previous values afterwards, even if the test fails.
    """
    old_values: Dict[str, Any] = {}
    for key, value in env.items():
        old_values[key] = os.environ.get(key)
        os.environ[key] = value
    try:
        yield
    finally:
        for key, old in old_values.items():
            if old is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = old


def agent(slug: str, keywords: Sequence[str] = (), **extra: Any) -> AgentDefinition:
    return AgentDefinition(
        slug=slug,
        name=extra.pop("name", slug.replace("-", " ").title()),
        keywords=list(keywords),
        **extra,
    )


def skill_context(with_erp: bool = True) -> SkillContext:
    creds = TenantCredentials(erp=ERP_CREDS if with_erp else None)
    return SkillContext(tenant_id="acme", user_id="u-1", credentials=creds)


class FakeDirectory:
    def __init__(self, agents: Sequence[AgentDefinition]):
        self.agents = OrderedDict((a.slug, a) for a in agents)
        self.lookups: List[str] = []

    def get_agent_by_slug(self, tenant_id: str, slug: str) -> Optional[AgentDefinition]:
        self.lookups.append(slug)
        return self.agents.get(slug)

    def list_active(self, tenant_id: str) -> List[AgentDefinition]:
        return [a for a in self.agents.values() if a.is_active]


class EmptyContext:
    def get_context_text(self, tenant_id: str) -> str:
        return ""


Script = Union[ModelTurn, BaseException, Callable[[ModelRequest], ModelTurn]]


class ScriptedProvider(BaseProvider):
    """
    Replays a fixed list of turns. Each entry is a ModelTurn, an exception to
    raise, or a callable taking the request. Past the end it answers with
    `default`.
    """

    name = "scripted"

    def __init__(self, script: Sequence[Script] = (), *, default: Optional[ModelTurn] = None, json_answer: Any = None):
        self.script = list(script)
        self.default = default or ModelTurn(text="")
        self.json_answer = json_answer
        self.requests: List[ModelRequest] = []
        self.json_prompts: List[str] = []
        self.json_schemas: List[Dict[str, Any]] = []

    async def complete(self, request: ModelRequest) -> ModelTurn:
        self.requests.append(request)
        item = self.script.pop(0) if self.script else self.default
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(request)
        return item

    async def complete_json(self, prompt: str, *, schema) -> ProviderResult:
        self.json_prompts.append(prompt)
        self.json_schemas.append(dict(schema))
        if isinstance(self.json_answer, BaseException):
            raise self.json_answer
        return ProviderResult(parsed_json=self.json_answer, raw_text=str(self.json_answer))


def text_turn(text: str, tokens: int = 10, thoughts: Sequence[str] = ()) -> ModelTurn:
    return ModelTurn(text=text, thoughts=list(thoughts), usage=ProviderUsage(total_tokens=tokens))


def tool_turn(*calls: ToolCall, tokens: int = 10) -> ModelTurn:
    return ModelTurn(tool_calls=list(calls), usage=ProviderUsage(total_tokens=tokens))


class SlowProvider(BaseProvider):
    name = "slow"

    def __init__(self, delay: float = 5.0):
        self.delay = delay
        self.calls = 0

    async def complete(self, request: ModelRequest) -> ModelTurn:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return ModelTurn(text="tarde")

    async def complete_json(self, prompt: str, *, schema) -> ProviderResult:
        await asyncio.sleep(self.delay)
        return ProviderResult(parsed_json={}, raw_text="{}")


class FakeErp:
    """
    In-memory stand-in for ErpClient. `rows` maps model name to records.
    Domains are recorded but not evaluated.
    """

    def __init__(self, rows: Optional[Dict[str, List[Dict[str, Any]]]] = None, *, fail_with: Optional[Exception] = None):
        self.rows = rows or {}
        self.fail_with = fail_with
        self.calls: List[tuple] = []

    async def __aenter__(self) -> "FakeErp":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def search_read(self, model, domain=None, *, fields=None, limit=50, offset=0, order=None):
        self.calls.append(("search_read", model, domain, limit))
        self._check()
        return [dict(r) for r in self.rows.get(model, [])[offset : offset + limit]]

    async def read_group(self, model, domain=None, fields=None, groupby=None, *, limit=80, offset=0, orderby=None, lazy=True):
        self.calls.append(("read_group", model, list(groupby or []), limit))
        self._check()
        records = self.rows.get(model, [])
        sums = [f.split(":")[0] for f in fields or [] if f.endswith(":sum")]
        if not groupby:
            row: Dict[str, Any] = {"__count": len(records)}
            for name in sums:
                row[name] = sum(float(r.get(name) or 0.0) for r in records)
            return [row]
        key_field = groupby[0]
        groups: "OrderedDict[Any, Dict[str, Any]]" = OrderedDict()
        for r in records:
            value = r.get(key_field)
            key = tuple(value) if isinstance(value, list) else value
            group = groups.setdefault(key, {key_field: value, "__count": 0, **{n: 0.0 for n in sums}})
            group["__count"] += 1
            for name in sums:
                group[name] += float(r.get(name) or 0.0)
        out = list(groups.values())
        if sums:
            out.sort(key=lambda g: -g[sums[0]])
        return out[:limit] if limit is not None else out

    async def search_count(self, model, domain=None):
        self.calls.append(("search_count", model, domain))
        self._check()
        return len(self.rows.get(model, []))


def sales_orders(count: int, amount: float = 250.0) -> List[Dict[str, Any]]:
    partners = [[1, "Ferretería Norte"], [2, "Distribuidora Sur"]]
    return [
        {
            "id": i + 1,
            "name": f"S{i + 1:05d}",
            "partner_id": partners[0] if i % 4 else partners[1],
            "amount_total": amount,
            "state": "sale",
        }
        for i in range(count)
    ]
