"""
Skill error hierarchy and normalization into Result.

Skills may raise any of these inside `execute`; the registry turns them (and
any other exception) into a failed Result so nothing escapes the skill
boundary.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from .types import ErrorCode, Result


class SkillExecutionError(RuntimeError):
    """Base class for failures raised inside a skill."""

    code: ErrorCode = "API_ERROR"

    def __init__(self, message: str, details: Any = None, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.details = details
        self.retryable = retryable

    def to_result(self) -> Result:
        return Result.fail(self.code, self.message, details=self.details, retryable=self.retryable)


class AuthenticationError(SkillExecutionError):
    """Credentials missing or rejected by the backing system."""

    code = "AUTH_ERROR"

    def __init__(self, integration: str, details: Any = None):
        super().__init__(f"{integration} credentials not configured or invalid", details=details)


class ValidationError(SkillExecutionError):
    """Input rejected before reaching the backing system."""

    code = "VALIDATION_ERROR"


class ApiError(SkillExecutionError):
    """The backing system failed or answered with an error."""

    code = "API_ERROR"

    def __init__(
        self,
        message: str,
        details: Any = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message, details=details, retryable=retryable)
        self.status_code = status_code


_RPC_PREFIX_RE = re.compile(r"RPC error:\s*(.+)", re.IGNORECASE | re.DOTALL)
_FIELD_RE = re.compile(r"Invalid field[:\s]*['\"]?(\w+)['\"]?", re.IGNORECASE)


def parse_rpc_error(exc: BaseException) -> str:
    """Readable message from a backing-system RPC failure."""
    message = str(exc)
    match = _RPC_PREFIX_RE.search(message)
    if match:
        return match.group(1).strip()
    match = _FIELD_RE.search(message)
    if match:
        return f"Invalid field: {match.group(1)}"
    if "Access Denied" in message or "AccessError" in message:
        return "Access denied. Check user permissions in the ERP."
    return message


def error_to_result(exc: BaseException) -> Result:
    """Map any exception raised during execution onto a failed Result."""
    if isinstance(exc, SkillExecutionError):
        return exc.to_result()
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    if "authentication" in lowered or "unauthorized" in lowered:
        return Result.fail("AUTH_ERROR", message)
    return Result.fail(
        "API_ERROR",
        parse_rpc_error(exc),
        details={"type": exc.__class__.__name__},
        retryable=is_retryable_error(exc),
    )


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, SkillExecutionError):
        return exc.retryable
    lowered = str(exc).lower()
    return any(marker in lowered for marker in ("timeout", "network", "econnreset", "502", "503", "504"))
