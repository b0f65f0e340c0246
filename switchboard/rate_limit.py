from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Tuple

from .config import get_settings

CHAT_RULE = "chat"


@dataclass(frozen=True)
class RateRule:
    key: str
    limit: int
    window_seconds: int


class SimpleRateLimiter:
    """Fixed-window request throttle per (rule, client). In-process only."""

    def __init__(self, rules: Dict[str, RateRule]):
        self._rules = rules
        self._state: Dict[Tuple[str, str], Tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def allow(self, rule_key: str, client_id: str) -> bool:
        rule = self._rules[rule_key]
        if rule.limit <= 0:
            return True
        now = time.monotonic()
        key = (rule_key, client_id)
        async with self._lock:
            remaining, reset_at = self._state.get(key, (rule.limit, now + rule.window_seconds))
            if now >= reset_at:
                remaining = rule.limit
                reset_at = now + rule.window_seconds
            if remaining <= 0:
                self._state[key] = (0, reset_at)
                return False
            self._state[key] = (remaining - 1, reset_at)
            return True

    def retry_after(self, rule_key: str, client_id: str) -> int:
        """Seconds until the client's window resets (0 when not throttled)."""
        state = self._state.get((rule_key, client_id))
        if state is None:
            return 0
        return max(0, int(state[1] - time.monotonic()) + 1)

    def reset(self) -> None:
        self._state.clear()


def chat_limiter() -> SimpleRateLimiter:
    settings = get_settings()
    return SimpleRateLimiter(
        {CHAT_RULE: RateRule(key=CHAT_RULE, limit=settings.chat_rate_limit, window_seconds=settings.chat_rate_window_seconds)}
    )
