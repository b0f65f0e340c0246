"""
Core skill types: execution context, Result and the Skill record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

ErrorCode = Literal["AUTH_ERROR", "VALIDATION_ERROR", "API_ERROR"]
ERROR_CODES = ("AUTH_ERROR", "VALIDATION_ERROR", "API_ERROR")


@dataclass(frozen=True)
class ErpCredentials:
    url: str
    db: str
    username: str
    api_key: str

    def __repr__(self) -> str:
        return f"ErpCredentials(url={self.url!r}, db={self.db!r}, username={self.username!r})"


@dataclass(frozen=True)
class TenantCredentials:
    """Resolved secrets for each backing system a tenant has configured."""

    erp: Optional[ErpCredentials] = None

    def for_integration(self, integration: str) -> Optional[Any]:
        return getattr(self, integration, None)


@dataclass(frozen=True)
class SkillContext:
    """Per-request execution context. Built once, never shared across requests."""

    tenant_id: str
    user_id: str
    credentials: TenantCredentials = field(default_factory=TenantCredentials)
    locale: str = "es-AR"
    agent_slug: Optional[str] = None


@dataclass(frozen=True)
class SkillError:
    code: ErrorCode
    message: str
    details: Any = None
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            out["details"] = self.details
        return out


@dataclass(frozen=True)
class Result:
    """
    Outcome of a skill execution.

    Exactly one of `payload` or `error` is set; construction fails otherwise.
    Use `Result.ok` / `Result.fail` rather than the constructor.
    """

    payload: Optional[Dict[str, Any]] = None
    error: Optional[SkillError] = None

    def __post_init__(self) -> None:
        if (self.payload is None) == (self.error is None):
            raise ValueError("Result must carry exactly one of payload or error")
        if self.error is not None and self.error.code not in ERROR_CODES:
            raise ValueError(f"Unknown skill error code: {self.error.code}")

    @classmethod
    def ok(cls, payload: Dict[str, Any]) -> "Result":
        return cls(payload=dict(payload))

    @classmethod
    def fail(cls, code: ErrorCode, message: str, details: Any = None, retryable: bool = False) -> "Result":
        return cls(error=SkillError(code=code, message=message, details=details, retryable=retryable))

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Serialized form sent back to the model as a tool-result turn."""
        if self.error is not None:
            return {"success": False, "error": self.error.to_dict()}
        return {"success": True, "data": self.payload}


def auth_error(integration: str) -> Result:
    return Result.fail("AUTH_ERROR", f"{integration} credentials not configured for this tenant")


SkillFn = Callable[[Dict[str, Any], SkillContext], Awaitable[Result]]


@dataclass(frozen=True)
class Skill:
    """
    A named, typed operation.

    `description` is the usage contract the model reads to decide when to
    call it; `input_schema` is a Draft-07 JSON Schema for its arguments.
    `integration` names the credential the skill needs (None for none).
    """

    name: str
    description: str
    tool: str
    input_schema: Dict[str, Any]
    execute: SkillFn
    tags: List[str] = field(default_factory=list)
    priority: int = 0
    integration: Optional[str] = "erp"

    def signature(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.input_schema}


# Shared input fragments.

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

PERIOD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "description": "Rango de fechas inclusivo (YYYY-MM-DD). Si se omite se usa el mes actual.",
    "properties": {
        "start": {"type": "string", "pattern": DATE_PATTERN},
        "end": {"type": "string", "pattern": DATE_PATTERN},
        "label": {"type": "string"},
    },
    "required": ["start", "end"],
    "additionalProperties": False,
}

DOCUMENT_STATE_SCHEMA: Dict[str, Any] = {
    "type": "string",
    "enum": ["all", "confirmed", "draft", "cancelled"],
    "default": "confirmed",
}


def limit_schema(default: int, maximum: int) -> Dict[str, Any]:
    return {"type": "integer", "minimum": 1, "maximum": maximum, "default": default}
