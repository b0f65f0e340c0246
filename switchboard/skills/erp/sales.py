"""Sales skills: totals, rankings and period comparison."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .. import erp_client
from ..query import SubQuery, combine_domains, execute_queries, state_filter, text_filter
from ..types import DOCUMENT_STATE_SCHEMA, Result, Skill, SkillContext, limit_schema
from ._common import format_amount, period_property, resolve_period


def _order_domain(params: Dict[str, Any]) -> List[Any]:
    return combine_domains(
        state_filter(params.get("state", "confirmed"), "sale.order"),
        text_filter("partner_id.name", params.get("customer_name")),
        text_filter("user_id.name", params.get("seller_name")),
    )


def _uses_default_state(params: Dict[str, Any]) -> bool:
    # "all" must not fall back to the confirmed-only default.
    return params.get("state", "confirmed") != "all"


async def _get_sales_total(params: Dict[str, Any], context: SkillContext) -> Result:
    period = resolve_period(params.get("period"))
    query = SubQuery(
        id="sales_total",
        model="sale.order",
        operation="aggregate",
        domain=_order_domain(params),
        date_range=period,
        default_state=_uses_default_state(params),
    )
    async with erp_client.open_client(context) as erp:
        (result,) = await execute_queries(erp, [query])
    result.raise_for_error()

    total = float(result.total or 0.0)
    count = int(result.count)
    average = round(total / count, 2) if count else 0.0
    summary = (
        f"Ventas {period['label']}: {format_amount(total)} en {count} pedidos"
        f" (ticket promedio {format_amount(average)})."
    )
    return Result.ok(
        {
            "summary": summary,
            "total": total,
            "count": count,
            "average_ticket": average,
            "period": period,
        }
    )


get_sales_total = Skill(
    name="get_sales_total",
    description=(
        "Total de ventas confirmadas de un período: monto, cantidad de pedidos y ticket promedio. "
        "EJECUTAR SIN PREGUNTAR PERÍODO (usa el mes actual por defecto).\n"
        'USAR PARA: "cuánto vendimos", "ventas del mes", "total facturado en ventas", '
        '"ventas de este trimestre", "cuánto vendió el vendedor X".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "period": period_property(),
            "state": DOCUMENT_STATE_SCHEMA,
            "customer_name": {"type": "string", "minLength": 1},
            "seller_name": {"type": "string", "minLength": 1},
        },
        "additionalProperties": False,
    },
    execute=_get_sales_total,
    tags=["sales", "reporting"],
    priority=10,
)


async def _get_sales_by_customer(params: Dict[str, Any], context: SkillContext) -> Result:
    period = resolve_period(params.get("period"))
    query = SubQuery(
        id="sales_by_customer",
        model="sale.order",
        operation="read_group",
        group_by="partner_id",
        domain=_order_domain(params),
        date_range=period,
        limit=params["limit"],
        default_state=_uses_default_state(params),
    )
    async with erp_client.open_client(context) as erp:
        (result,) = await execute_queries(erp, [query])
    result.raise_for_error()

    customers = [
        {
            "customer_id": g["key"],
            "customer_name": g["name"],
            "order_count": g["count"],
            "total": g["total"],
        }
        for g in result.grouped
    ]
    total = float(result.total or 0.0)
    top = customers[0] if customers else None
    summary = f"Ventas por cliente {period['label']}: total {format_amount(total)} en {result.count} pedidos."
    if top:
        summary += f" Principal cliente: {top['customer_name']} con {format_amount(top['total'])}."
    if result.upgraded:
        summary += f" Se listan los {len(customers)} principales clientes."
    return Result.ok(
        {
            "summary": summary,
            "customers": customers,
            "total": total,
            "count": result.count,
            "period": period,
        }
    )


get_sales_by_customer = Skill(
    name="get_sales_by_customer",
    description=(
        "Ventas agrupadas por cliente en un período, ordenadas de mayor a menor.\n"
        'USAR PARA: "mejores clientes", "a quién le vendimos más", "ranking de clientes", '
        '"ventas por cliente".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "period": period_property(),
            "limit": limit_schema(10, 50),
            "state": DOCUMENT_STATE_SCHEMA,
        },
        "additionalProperties": False,
    },
    execute=_get_sales_by_customer,
    tags=["sales", "customers", "reporting"],
    priority=8,
)


async def _get_top_products(params: Dict[str, Any], context: SkillContext) -> Result:
    period = resolve_period(params.get("period"))
    by_revenue = params["order_by"] == "revenue"
    query = SubQuery(
        id="top_products",
        model="sale.order.line",
        operation="read_group",
        group_by="product_id",
        date_range=period,
        sum_fields=["product_uom_qty"],
        order_by="price_total desc" if by_revenue else "product_uom_qty desc",
        limit=params["limit"],
    )
    async with erp_client.open_client(context) as erp:
        (result,) = await execute_queries(erp, [query])
    result.raise_for_error()

    products = [
        {
            "product_id": g["key"],
            "product_name": g["name"],
            "quantity_sold": g["product_uom_qty"],
            "revenue": g["total"] or 0.0,
        }
        for g in result.grouped
        if g["key"] not in (None, False)
    ]
    summary = f"Top {len(products)} productos por {'facturación' if by_revenue else 'cantidad'} {period['label']}."
    if products:
        summary += f" El primero es {products[0]['product_name']} con {format_amount(products[0]['revenue'])}."
    total_revenue = float(result.total or 0.0)
    summary += f" Facturación total del período: {format_amount(total_revenue)}."
    return Result.ok(
        {
            "summary": summary,
            "products": products,
            "total_revenue": total_revenue,
            "total_quantity": result.sums.get("product_uom_qty", 0.0),
            "line_count": result.count,
            "period": period,
        }
    )


get_top_products = Skill(
    name="get_top_products",
    description=(
        "Productos más vendidos por facturación o cantidad. EJECUTAR SIN PREGUNTAR PERÍODO "
        "(usa el mes actual por defecto).\n"
        'USAR PARA: "productos más vendidos", "qué se vende más", "ranking de productos", "best sellers".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "period": period_property(),
            "limit": limit_schema(10, 50),
            "order_by": {"type": "string", "enum": ["revenue", "quantity"], "default": "revenue"},
        },
        "additionalProperties": False,
    },
    execute=_get_top_products,
    tags=["sales", "products", "reporting"],
    priority=6,
)


def change_percent(current: float, previous: float) -> Optional[float]:
    if previous == 0:
        return 100.0 if current > 0 else None
    return round((current - previous) / previous * 100, 1)


def trend(percent: Optional[float]) -> str:
    if percent is None:
        return "stable"
    if percent > 5:
        return "up"
    if percent < -5:
        return "down"
    return "stable"


async def _compare_sales_periods(params: Dict[str, Any], context: SkillContext) -> Result:
    current_period = resolve_period(params.get("current_period"))
    previous_period = resolve_period(params.get("previous_period"), previous=True)
    queries = [
        SubQuery(id="current", model="sale.order", operation="aggregate", date_range=current_period),
        SubQuery(id="previous", model="sale.order", operation="aggregate", date_range=previous_period),
    ]
    async with erp_client.open_client(context) as erp:
        current, previous = await execute_queries(erp, queries)
    current.raise_for_error()
    previous.raise_for_error()

    current_total = float(current.total or 0.0)
    previous_total = float(previous.total or 0.0)
    percent = change_percent(current_total, previous_total)
    direction = trend(percent)
    arrow = {"up": "subieron", "down": "bajaron", "stable": "se mantuvieron estables"}[direction]
    summary = (
        f"Las ventas {arrow}: {format_amount(current_total)} ({current_period['label']}) contra "
        f"{format_amount(previous_total)} ({previous_period['label']})"
        + (f", variación {percent:+.1f}%." if percent is not None else ".")
    )
    return Result.ok(
        {
            "summary": summary,
            "current": {"total": current_total, "count": current.count, "period": current_period},
            "previous": {"total": previous_total, "count": previous.count, "period": previous_period},
            "change": round(current_total - previous_total, 2),
            "change_percent": percent,
            "trend": direction,
        }
    )


compare_sales_periods = Skill(
    name="compare_sales_periods",
    description=(
        "Compara ventas entre dos períodos (por defecto mes actual contra mes anterior) y devuelve "
        "variación absoluta, porcentual y tendencia.\n"
        'USAR PARA: "vendimos más o menos que el mes pasado", "cómo venimos contra el mes anterior", '
        '"comparar ventas".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "current_period": period_property(),
            "previous_period": period_property(),
        },
        "additionalProperties": False,
    },
    execute=_compare_sales_periods,
    tags=["sales", "comparison", "reporting"],
    priority=7,
)


SKILLS = [get_sales_total, get_sales_by_customer, get_top_products, compare_sales_periods]
