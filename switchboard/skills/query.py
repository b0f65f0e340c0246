"""
Structured sub-queries against the ERP and their executor.

A SubQuery names an entity, an operation and a composable filter list. The
executor turns it into search_read / read_group calls and reports `count`
and `total` for the *whole* matching population: a `search` whose page is
full is re-counted server-side so a truncated page never understates them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import error_to_result

logger = logging.getLogger("switchboard")

Filter = List[Any]  # [field, operator, value]
Domain = List[Any]

OPERATIONS = ("search", "aggregate", "read_group")
_OPERATION_ALIASES = {"readGroup": "read_group", "group_by": "read_group", "groupBy": "read_group"}


@dataclass(frozen=True)
class EntityConfig:
    date_field: Optional[str]
    amount_field: Optional[str]
    state_field: Optional[str] = None
    confirmed_states: Optional[List[str]] = None
    default_fields: List[str] = field(default_factory=list)


ENTITIES: Dict[str, EntityConfig] = {
    "sale.order": EntityConfig(
        date_field="date_order",
        amount_field="amount_total",
        state_field="state",
        confirmed_states=["sale", "done"],
        default_fields=["name", "partner_id", "date_order", "amount_total", "user_id"],
    ),
    "sale.order.line": EntityConfig(
        date_field="order_id.date_order",
        amount_field="price_total",
        state_field="order_id.state",
        confirmed_states=["sale", "done"],
        default_fields=["order_id", "product_id", "product_uom_qty", "price_total"],
    ),
    "purchase.order": EntityConfig(
        date_field="date_order",
        amount_field="amount_total",
        state_field="state",
        confirmed_states=["purchase", "done"],
        default_fields=["name", "partner_id", "date_order", "amount_total"],
    ),
    "account.move": EntityConfig(
        date_field="invoice_date",
        amount_field="amount_total",
        state_field="state",
        confirmed_states=["posted"],
        default_fields=["name", "partner_id", "invoice_date", "amount_total", "amount_residual"],
    ),
    "account.payment": EntityConfig(
        date_field="date",
        amount_field="amount",
        state_field="state",
        confirmed_states=["posted"],
        default_fields=["name", "partner_id", "date", "amount"],
    ),
    "stock.quant": EntityConfig(
        date_field=None,
        amount_field="quantity",
        default_fields=["product_id", "location_id", "quantity"],
    ),
    "product.product": EntityConfig(
        date_field=None,
        amount_field=None,
        default_fields=["name", "default_code", "qty_available"],
    ),
    "res.partner": EntityConfig(
        date_field=None,
        amount_field=None,
        default_fields=["name", "vat", "email", "phone"],
    ),
}

_STATE_MAP: Dict[str, Dict[str, Any]] = {
    "sale.order": {"confirmed": ["sale", "done"], "draft": "draft", "cancelled": "cancel"},
    "purchase.order": {"confirmed": ["purchase", "done"], "draft": "draft", "cancelled": "cancel"},
    "account.move": {"confirmed": "posted", "draft": "draft", "cancelled": "cancel"},
}


# Domain builders. Every builder returns a list of filters; combine_domains ANDs them.


def date_range(field_name: str, start: str, end: str) -> List[Filter]:
    return [[field_name, ">=", start], [field_name, "<=", end]]


def state_filter(state: str, model: str, field_name: str = "state") -> List[Filter]:
    if state == "all":
        return []
    value = _STATE_MAP.get(model, {}).get(state)
    if value is None:
        return []
    if isinstance(value, list):
        return [[field_name, "in", list(value)]]
    return [[field_name, "=", value]]


def invoice_type_filter(move_type: str) -> List[Filter]:
    if move_type == "all":
        return []
    return [["move_type", "=", move_type]]


def text_filter(field_name: str, text: Optional[str]) -> List[Filter]:
    if not text or not str(text).strip():
        return []
    return [[field_name, "ilike", str(text).strip()]]


def threshold(field_name: str, op: str, value: Any) -> List[Filter]:
    if value is None:
        return []
    if op not in {">", ">=", "<", "<=", "=", "!="}:
        raise ValueError(f"Unsupported comparison operator: {op}")
    return [[field_name, op, value]]


def combine_domains(*domains: Optional[Sequence[Filter]]) -> Domain:
    combined: Domain = []
    for domain in domains:
        if domain:
            # prefix operators ("|", "&", "!") pass through untouched
            combined.extend(f if isinstance(f, str) else list(f) for f in domain)
    return combined


@dataclass
class SubQuery:
    """
    One independent read against the ERP.

    `amount_field` overrides the entity's summed field (e.g. the open balance
    instead of the invoice total); `sum_fields` are summed alongside it and
    reported per group and for the whole population.
    """

    id: str
    model: str
    operation: str = "search"
    domain: Domain = field(default_factory=list)
    date_range: Optional[Dict[str, str]] = None
    group_by: Optional[str] = None
    fields: Optional[List[str]] = None
    order_by: Optional[str] = None
    limit: int = 50
    default_state: bool = True
    amount_field: Optional[str] = None
    sum_fields: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.operation = _OPERATION_ALIASES.get(self.operation, self.operation)
        if self.operation not in OPERATIONS:
            raise ValueError(f"Unknown sub-query operation: {self.operation}")
        if self.limit < 1:
            raise ValueError("Sub-query limit must be positive")

    @property
    def summed_field(self) -> Optional[str]:
        return self.amount_field or entity_config(self.model).amount_field


@dataclass
class QueryResult:
    id: str
    data: List[Dict[str, Any]] = field(default_factory=list)
    grouped: List[Dict[str, Any]] = field(default_factory=list)
    count: int = 0
    total: Optional[float] = None
    sums: Dict[str, float] = field(default_factory=dict)
    upgraded: bool = False
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    def raise_for_error(self) -> None:
        if self.exception is not None:
            raise self.exception

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "count": self.count, "total": self.total}
        if self.sums:
            out["sums"] = self.sums
        if self.data:
            out["data"] = self.data
        if self.grouped:
            out["grouped"] = self.grouped
        if self.error:
            out["error"] = self.error
        return out


def entity_config(model: str) -> EntityConfig:
    return ENTITIES.get(model) or EntityConfig(date_field=None, amount_field=None)


def _mentions_field(domain: Domain, field_name: str) -> bool:
    return any(isinstance(f, (list, tuple)) and f and f[0] == field_name for f in domain)


def build_domain(query: SubQuery) -> Domain:
    """Query filters plus the entity's date range and default confirmed-state filter."""
    config = entity_config(query.model)
    parts: List[Optional[Sequence[Filter]]] = [query.domain]
    if query.date_range and config.date_field:
        parts.append(date_range(config.date_field, query.date_range["start"], query.date_range["end"]))
    if (
        query.default_state
        and config.state_field
        and config.confirmed_states
        and not _mentions_field(query.domain, config.state_field)
    ):
        parts.append([[config.state_field, "in", list(config.confirmed_states)]])
    return combine_domains(*parts)


def _row_count(row: Dict[str, Any], group_by: Optional[str]) -> int:
    if "__count" in row:
        return int(row["__count"] or 0)
    if group_by and f"{group_by}_count" in row:
        return int(row[f"{group_by}_count"] or 0)
    return 0


def _group_key(value: Any) -> Dict[str, Any]:
    # many2one groups come back as [id, display_name]; scalars as themselves.
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return {"key": value[0], "name": value[1]}
    return {"key": value, "name": value if value not in (None, False) else "Sin asignar"}


def _sum_specs(query: SubQuery) -> List[str]:
    names = [query.summed_field] if query.summed_field else []
    names += [f for f in query.sum_fields if f not in names]
    return [f"{name}:sum" for name in names]


def _float(row: Dict[str, Any], name: str) -> float:
    return float(row.get(name) or 0.0)


async def _population(client: Any, query: SubQuery, domain: Domain) -> Dict[str, Any]:
    """Server-side count and sums over the full domain."""
    specs = _sum_specs(query)
    if not specs:
        return {"count": await client.search_count(query.model, domain), "total": None, "sums": {}}
    rows = await client.read_group(query.model, domain, specs, [], limit=None, lazy=False)
    row = rows[0] if rows else {}
    amount = query.summed_field
    return {
        "count": _row_count(row, None),
        "total": _float(row, amount) if amount else None,
        "sums": {name: _float(row, name) for name in query.sum_fields},
    }


def _apply_population(result: QueryResult, population: Dict[str, Any]) -> None:
    result.count = population["count"]
    result.total = population["total"]
    result.sums = population["sums"]
    result.upgraded = True


async def _run_search(client: Any, query: SubQuery, domain: Domain) -> QueryResult:
    config = entity_config(query.model)
    page = await client.search_read(
        query.model,
        domain,
        fields=query.fields or config.default_fields,
        limit=query.limit,
        order=query.order_by,
    )
    result = QueryResult(id=query.id, data=list(page))
    if len(page) >= query.limit:
        _apply_population(result, await _population(client, query, domain))
        logger.info(
            "sub-query auto-upgraded id=%s model=%s page=%s count=%s",
            query.id,
            query.model,
            len(page),
            result.count,
        )
        return result
    result.count = len(page)
    if query.summed_field:
        result.total = float(sum(_float(r, query.summed_field) for r in page))
    result.sums = {name: float(sum(_float(r, name) for r in page)) for name in query.sum_fields}
    return result


async def _run_read_group(client: Any, query: SubQuery, domain: Domain) -> QueryResult:
    group_by = query.group_by or ""
    amount = query.summed_field
    order = query.order_by or (f"{amount} desc" if amount else None)
    rows = await client.read_group(
        query.model,
        domain,
        [group_by] + _sum_specs(query),
        [group_by],
        limit=query.limit,
        orderby=order,
        lazy=False,
    )
    result = QueryResult(id=query.id)
    for row in rows:
        entry = _group_key(row.get(group_by))
        entry["count"] = _row_count(row, group_by)
        entry["total"] = _float(row, amount) if amount else None
        for name in query.sum_fields:
            entry[name] = _float(row, name)
        result.grouped.append(entry)
    if len(rows) >= query.limit:
        _apply_population(result, await _population(client, query, domain))
    else:
        result.count = sum(g["count"] for g in result.grouped)
        if amount:
            result.total = float(sum(g["total"] or 0.0 for g in result.grouped))
        result.sums = {name: float(sum(g[name] for g in result.grouped)) for name in query.sum_fields}
    return result


async def execute_query(client: Any, query: SubQuery) -> QueryResult:
    """Run one sub-query. Failures are captured on the result, never raised."""
    domain = build_domain(query)
    try:
        if query.operation == "search":
            return await _run_search(client, query, domain)
        # aggregate and read_group share a path; without group_by both collapse to one total.
        if query.group_by:
            return await _run_read_group(client, query, domain)
        population = await _population(client, query, domain)
        return QueryResult(id=query.id, count=population["count"], total=population["total"], sums=population["sums"])
    except Exception as exc:
        failed = error_to_result(exc)
        logger.warning("sub-query failed id=%s model=%s error=%s", query.id, query.model, failed.error.message)
        return QueryResult(id=query.id, error=failed.error.message, exception=exc)


async def execute_queries(client: Any, queries: Sequence[SubQuery]) -> List[QueryResult]:
    """Run independent sub-queries concurrently; results keep the input order."""
    return list(await asyncio.gather(*(execute_query(client, q) for q in queries)))
