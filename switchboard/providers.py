from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .config import get_settings

logger = logging.getLogger("switchboard")


class ModelTransportError(RuntimeError):
    """Raised when the model provider call fails."""

    def __init__(self, message: str, *, retryable: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderUsage:
    total_tokens: int = 0
    thinking_tokens: int = 0


@dataclass
class ModelRequest:
    """
    One model call. `messages` are neutral dicts:
    {"role": "user"|"assistant"|"tool", "content": str, "tool_calls"?: [ToolCall-like dicts],
    "tool_call_id"?: str, "name"?: str}.
    """

    system: str
    messages: List[Dict[str, Any]]
    tools: List[Dict[str, Any]] = field(default_factory=list)
    tool_choice: str = "auto"
    thinking_level: str = "medium"
    include_thoughts: bool = False
    model: Optional[str] = None


@dataclass
class ModelTurn:
    """Normalized result of one model call."""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    thoughts: List[str] = field(default_factory=list)
    usage: ProviderUsage = field(default_factory=ProviderUsage)


@dataclass
class ProviderResult:
    """Normalized result of a JSON-only call."""

    parsed_json: Dict[str, Any]
    raw_text: str
    usage: ProviderUsage = field(default_factory=ProviderUsage)


class BaseProvider:
    """
    Abstract provider interface.

    `complete` drives tool-augmented generation; `complete_json` is used for
    short structured calls such as routing classification.
    """

    name = "base"

    async def complete(self, request: ModelRequest) -> ModelTurn:  # pragma: no cover - interface only
        raise NotImplementedError

    async def complete_json(self, prompt: str, *, schema: Mapping[str, Any]) -> ProviderResult:  # pragma: no cover - interface only
        raise NotImplementedError


class StubProvider(BaseProvider):
    """
    Deterministic, network-free provider.

    Never requests tools; answers with a short acknowledgement of the last
    user message. JSON calls fabricate a payload that conforms to the schema.
    """

    name = "stub"

    async def complete(self, request: ModelRequest) -> ModelTurn:
        last_user = next((m.get("content", "") for m in reversed(request.messages) if m.get("role") == "user"), "")
        text = f"Respuesta de prueba: {last_user}".strip() if last_user else "Respuesta de prueba."
        return ModelTurn(text=text, usage=ProviderUsage(total_tokens=_estimate_tokens(request, text)))

    async def complete_json(self, prompt: str, *, schema: Mapping[str, Any]) -> ProviderResult:
        parsed = _generate_from_schema(schema)
        return ProviderResult(parsed_json=parsed, raw_text=json.dumps(parsed))


def _estimate_tokens(request: ModelRequest, text: str) -> int:
    chars = len(request.system) + sum(len(str(m.get("content", ""))) for m in request.messages) + len(text)
    return max(1, chars // 4)


def _generate_from_schema(schema: Mapping[str, Any]) -> Any:
    """Very small deterministic JSON generator for Draft-07-style schemas."""
    if "enum" in schema and schema["enum"]:
        return schema["enum"][0]

    schema_type = schema.get("type")

    if schema_type == "object":
        props = schema.get("properties", {}) or {}
        result: Dict[str, Any] = {}
        for name, sub in props.items():
            result[name] = _generate_from_schema(sub)
        for name in schema.get("required", []) or []:
            if name not in result:
                result[name] = None
        return result

    if schema_type == "array":
        return [_generate_from_schema(schema.get("items", {}) or {})]

    if schema_type == "string":
        return "stub"

    if schema_type == "number":
        return 1.0

    if schema_type == "integer":
        return 1

    if schema_type == "boolean":
        return False

    if "properties" in schema:
        return _generate_from_schema({"type": "object", **schema})

    return None


class ChatCompletionsProvider(BaseProvider):
    """
    Provider speaking the chat-completions wire format (tools + tool_choice).
    Subclasses set the endpoint and how thinking verbosity is requested.
    """

    api_url = ""
    default_model = ""

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        *,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model or self.default_model
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _thinking_options(self, request: ModelRequest) -> Dict[str, Any]:
        return {}

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.api_url, headers=self._headers(), json=body)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ModelTransportError(
                f"{self.name} returned HTTP {status}",
                retryable=status == 429 or status >= 500,
                status_code=status,
            ) from exc
        except httpx.TransportError as exc:
            raise ModelTransportError(f"{self.name} transport error: {exc}", retryable=True) from exc
        except ValueError as exc:
            raise ModelTransportError(f"{self.name} returned a non-JSON body") from exc

    async def complete(self, request: ModelRequest) -> ModelTurn:
        body: Dict[str, Any] = {
            "model": request.model or self.model,
            "messages": [{"role": "system", "content": request.system}] + _to_wire_messages(request.messages),
        }
        if request.tools and request.tool_choice != "none":
            body["tools"] = [{"type": "function", "function": sig} for sig in request.tools]
            body["tool_choice"] = request.tool_choice
        body.update(self._thinking_options(request))

        data = await self._post(body)
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelTransportError(f"{self.name} response has no choices") from exc

        tool_calls = []
        for raw in message.get("tool_calls") or []:
            fn = raw.get("function") or {}
            try:
                arguments = json.loads(fn.get("arguments") or "{}")
            except json.JSONDecodeError:
                arguments = {"__raw__": fn.get("arguments")}
            tool_calls.append(ToolCall(id=str(raw.get("id") or fn.get("name")), name=str(fn.get("name")), arguments=arguments))

        thoughts = []
        reasoning = message.get("reasoning") or message.get("reasoning_content")
        if reasoning and request.include_thoughts:
            thoughts.append(str(reasoning))

        return ModelTurn(
            text=(message.get("content") or "").strip(),
            tool_calls=tool_calls,
            thoughts=thoughts,
            usage=_parse_usage(data.get("usage")),
        )

    async def complete_json(self, prompt: str, *, schema: Mapping[str, Any]) -> ProviderResult:
        body = {
            "model": self.model,
            "temperature": 0.1,
            "messages": [
                {
                    "role": "system",
                    "content": "You are a JSON-only API. Respond with strictly valid JSON that matches the provided JSON Schema.",
                },
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_schema", "json_schema": {"name": "agent_output", "schema": dict(schema)}},
        }
        data = await self._post(body)
        try:
            raw_text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelTransportError(f"{self.name} response has no choices") from exc

        try:
            parsed = json.loads(raw_text)
        except json.JSONDecodeError:
            parsed = {}

        return ProviderResult(parsed_json=parsed, raw_text=raw_text, usage=_parse_usage(data.get("usage")))


def _to_wire_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    wire: List[Dict[str, Any]] = []
    for m in messages:
        role = m.get("role")
        if role == "tool":
            wire.append({"role": "tool", "tool_call_id": m.get("tool_call_id"), "content": m.get("content", "")})
        elif role == "assistant" and m.get("tool_calls"):
            wire.append(
                {
                    "role": "assistant",
                    "content": m.get("content") or None,
                    "tool_calls": [
                        {
                            "id": tc["id"],
                            "type": "function",
                            "function": {"name": tc["name"], "arguments": json.dumps(tc.get("arguments") or {})},
                        }
                        for tc in m["tool_calls"]
                    ],
                }
            )
        else:
            wire.append({"role": role, "content": m.get("content", "")})
    return wire


def _parse_usage(raw: Any) -> ProviderUsage:
    if not isinstance(raw, dict):
        return ProviderUsage()
    details = raw.get("completion_tokens_details") or {}
    return ProviderUsage(
        total_tokens=int(raw.get("total_tokens") or 0),
        thinking_tokens=int(details.get("reasoning_tokens") or 0),
    )


class OpenAIProvider(ChatCompletionsProvider):
    name = "openai"
    api_url = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-4o-mini"

    def _thinking_options(self, request: ModelRequest) -> Dict[str, Any]:
        # Only reasoning models accept reasoning_effort.
        model = request.model or self.model
        if model.startswith(("o1", "o3", "o4", "gpt-5")):
            return {"reasoning_effort": request.thinking_level}
        return {}


OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterProvider(ChatCompletionsProvider):
    """
    OpenRouter provider: one API key, many models (OpenAI, Claude, Gemini, etc.).
    """

    name = "openrouter"
    api_url = OPENROUTER_API_URL
    default_model = "openai/gpt-4o-mini"

    def _thinking_options(self, request: ModelRequest) -> Dict[str, Any]:
        effort = "low" if request.thinking_level == "minimal" else request.thinking_level
        return {"reasoning": {"effort": effort, "exclude": not request.include_thoughts}}


def build_provider(model_id: Optional[str] = None) -> BaseProvider:
    """Factory that chooses the concrete provider implementation."""
    settings = get_settings()
    model_id = model_id or settings.model_id
    if settings.provider_name == "openrouter":
        api_key = _get_env("OPENROUTER_API_KEY")
        if not api_key:
            logger.warning("OPENROUTER_API_KEY missing; using stub provider")
            return StubProvider()
        return OpenRouterProvider(api_key=api_key, model=model_id)
    if settings.provider_name == "openai":
        api_key = _get_env("OPENAI_API_KEY")
        if not api_key:
            logger.warning("OPENAI_API_KEY missing; using stub provider")
            return StubProvider()
        return OpenAIProvider(api_key=api_key, model=model_id)

    return StubProvider()


def _get_env(name: str) -> Optional[str]:
    return os.getenv(name) or None
