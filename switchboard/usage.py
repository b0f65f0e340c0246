"""
Usage meter: monthly token allowance per user.

The pre-check is strict and runs before any model or skill call. The
post-commit is best-effort: a failed write is logged, never raised.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional

from . import dates
from .config import get_settings
from .storage import usage_store

logger = logging.getLogger("switchboard")


@dataclass(frozen=True)
class Plan:
    name: str
    tokens_per_month: Optional[int] = None
    tokens_per_user: Optional[int] = None

    @property
    def limit(self) -> int:
        return int(self.tokens_per_user or self.tokens_per_month or FREE_PLAN.tokens_per_month or 0)


FREE_PLAN = Plan(name="FREE", tokens_per_month=100_000)


def pro_plan() -> Plan:
    return Plan(name="PRO", tokens_per_user=get_settings().usage_tokens_per_user)


class BillingExceeded(RuntimeError):
    """Raised by the pre-check when the user has no allowance left for the period."""

    def __init__(self, current: int, limit: int, *, tenant_id: str = "", user_key: str = ""):
        super().__init__(f"Monthly token limit reached for user ({current}/{limit})")
        self.current = current
        self.limit = limit
        self.tenant_id = tenant_id
        self.user_key = user_key


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / 3)


class UsageMeter:
    def __init__(self, tenant_plans: Optional[Dict[str, str]] = None, *, default_plan: str = "PRO"):
        self._tenant_plans = dict(tenant_plans or {})
        self._default_plan = default_plan

    def plan_for(self, tenant_id: str) -> Plan:
        name = self._tenant_plans.get(tenant_id, self._default_plan).upper()
        return FREE_PLAN if name == "FREE" else pro_plan()

    def current_usage(self, tenant_id: str, user_key: str) -> int:
        return usage_store.get_usage(tenant_id, user_key, dates.current_month())

    def check_limit(self, tenant_id: str, user_key: str, estimated_tokens: int) -> None:
        limit = self.plan_for(tenant_id).limit
        current = self.current_usage(tenant_id, user_key)
        if current + int(estimated_tokens) > limit:
            logger.warning(
                "usage limit reached tenant=%s user=%s current=%s estimated=%s limit=%s",
                tenant_id,
                user_key,
                current,
                estimated_tokens,
                limit,
            )
            raise BillingExceeded(current, limit, tenant_id=tenant_id, user_key=user_key)

    def track_usage(self, tenant_id: str, user_key: str, tokens: int) -> None:
        if tokens <= 0:
            return
        try:
            usage_store.increment_usage(tenant_id, user_key, dates.current_month(), tokens)
        except Exception:
            logger.exception("usage tracking failed tenant=%s user=%s tokens=%s", tenant_id, user_key, tokens)
