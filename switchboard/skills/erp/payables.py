"""Supplier-side skills: what we owe and what we bought."""

from __future__ import annotations

from typing import Any, Dict

from ... import dates
from .. import erp_client
from ..query import SubQuery, combine_domains, execute_queries, invoice_type_filter, state_filter, text_filter, threshold
from ..types import DOCUMENT_STATE_SCHEMA, Result, Skill, SkillContext, limit_schema
from ._common import format_amount, period_property, resolve_period


async def _get_accounts_payable(params: Dict[str, Any], context: SkillContext) -> Result:
    domain = combine_domains(
        invoice_type_filter("in_invoice"),
        [["state", "=", "posted"]],
        threshold("amount_residual", ">", 0),
        text_filter("partner_id.name", params.get("supplier_name")),
    )
    queries = [
        SubQuery(
            id="payable",
            model="account.move",
            operation="read_group",
            group_by="partner_id",
            domain=domain,
            amount_field="amount_residual",
            order_by="amount_residual desc",
            limit=params["limit"],
        ),
        SubQuery(
            id="overdue",
            model="account.move",
            operation="aggregate",
            domain=combine_domains(domain, [["invoice_date_due", "<", dates.today().isoformat()]]),
            amount_field="amount_residual",
        ),
    ]
    async with erp_client.open_client(context) as erp:
        payable, overdue = await execute_queries(erp, queries)
    payable.raise_for_error()

    suppliers = [
        {
            "supplier_id": g["key"],
            "supplier_name": g["name"],
            "invoice_count": g["count"],
            "amount_due": g["total"] or 0.0,
        }
        for g in payable.grouped
        if g["key"] not in (None, False)
    ]
    total_payable = float(payable.total or 0.0)
    summary = f"Cuentas a pagar: {format_amount(total_payable)} en {payable.count} facturas de proveedores."
    if suppliers:
        summary += f" Mayor acreedor: {suppliers[0]['supplier_name']} con {format_amount(suppliers[0]['amount_due'])}."
    if payable.upgraded:
        summary += f" Se listan los {len(suppliers)} proveedores con más saldo."
    payload: Dict[str, Any] = {
        "summary": summary,
        "suppliers": suppliers,
        "total_payable": total_payable,
        "invoice_count": payable.count,
    }
    if overdue.error:
        payload["overdue_error"] = overdue.error
    else:
        payload["overdue_amount"] = float(overdue.total or 0.0)
        payload["overdue_count"] = overdue.count
        if overdue.count:
            payload["summary"] += f" Vencido: {format_amount(overdue.total)} en {overdue.count} facturas."
    return Result.ok(payload)


get_accounts_payable = Skill(
    name="get_accounts_payable",
    description=(
        "Deuda con proveedores (facturas de compra publicadas con saldo), agrupada por proveedor, "
        "con el monto ya vencido.\n"
        'USAR PARA: "cuánto le debemos a proveedores", "cuentas a pagar", "deuda con proveedor X", '
        '"qué facturas de proveedores están vencidas".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "supplier_name": {"type": "string", "minLength": 1},
            "limit": limit_schema(10, 50),
        },
        "additionalProperties": False,
    },
    execute=_get_accounts_payable,
    tags=["payables", "suppliers", "accounting"],
    priority=7,
)


async def _get_purchases_by_supplier(params: Dict[str, Any], context: SkillContext) -> Result:
    period = resolve_period(params.get("period"))
    query = SubQuery(
        id="purchases",
        model="purchase.order",
        operation="read_group",
        group_by="partner_id",
        domain=combine_domains(
            state_filter(params["state"], "purchase.order"),
            text_filter("partner_id.name", params.get("supplier_name")),
        ),
        date_range=period,
        limit=params["limit"],
        default_state=params["state"] != "all",
    )
    async with erp_client.open_client(context) as erp:
        (result,) = await execute_queries(erp, [query])
    result.raise_for_error()

    total = float(result.total or 0.0)
    suppliers = [
        {
            "supplier_id": g["key"],
            "supplier_name": g["name"],
            "order_count": g["count"],
            "total": g["total"] or 0.0,
            "share_percent": round((g["total"] or 0.0) / total * 100, 1) if total else None,
        }
        for g in result.grouped
        if g["key"] not in (None, False)
    ]
    summary = f"Compras {period['label']}: {format_amount(total)} en {result.count} órdenes."
    if suppliers:
        top = suppliers[0]
        summary += f" Principal proveedor: {top['supplier_name']} con {format_amount(top['total'])}"
        summary += f" ({top['share_percent']:g}% del total)." if top["share_percent"] is not None else "."
    if result.upgraded:
        summary += f" Se listan los {len(suppliers)} principales proveedores."
    return Result.ok(
        {
            "summary": summary,
            "suppliers": suppliers,
            "total": total,
            "count": result.count,
            "period": period,
        }
    )


get_purchases_by_supplier = Skill(
    name="get_purchases_by_supplier",
    description=(
        "Compras (órdenes de compra) agrupadas por proveedor en un período, de mayor a menor, con la "
        "participación de cada uno. Usa el mes actual por defecto.\n"
        'USAR PARA: "a quién le compramos más", "compras por proveedor", "cuánto le compramos a X", '
        '"principales proveedores".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "period": period_property(),
            "supplier_name": {"type": "string", "minLength": 1},
            "state": DOCUMENT_STATE_SCHEMA,
            "limit": limit_schema(10, 50),
        },
        "additionalProperties": False,
    },
    execute=_get_purchases_by_supplier,
    tags=["purchases", "suppliers", "reporting"],
    priority=6,
)


SKILLS = [get_accounts_payable, get_purchases_by_supplier]
