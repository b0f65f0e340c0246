from __future__ import annotations

from typing import Any, Dict, Optional

from ... import dates
from ..types import PERIOD_SCHEMA


def resolve_period(raw: Optional[Dict[str, Any]], *, previous: bool = False) -> Dict[str, str]:
    """Requested period or, when omitted, the current (or previous) month."""
    if raw:
        return {"start": raw["start"], "end": raw["end"], "label": raw.get("label") or f"{raw['start']} a {raw['end']}"}
    start, end, label = dates.previous_month_period() if previous else dates.current_month_period()
    return {"start": start, "end": end, "label": label}


def format_amount(value: Optional[float]) -> str:
    """Argentine-style currency: $ 1.234.567"""
    amount = float(value or 0.0)
    return "$ " + f"{amount:,.0f}".replace(",", ".")


def many2one(value: Any) -> Dict[str, Any]:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return {"id": value[0], "name": value[1]}
    return {"id": None, "name": None}


def period_property() -> Dict[str, Any]:
    return dict(PERIOD_SCHEMA)
