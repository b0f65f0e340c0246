"""Receivables skills: customer debt, overdue invoices and collections."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List

from ... import dates
from .. import erp_client
from ..query import SubQuery, combine_domains, execute_queries, invoice_type_filter, text_filter, threshold
from ..types import Result, Skill, SkillContext, limit_schema
from ._common import format_amount, many2one, period_property, resolve_period


def _open_invoices_domain(params: Dict[str, Any]) -> List[Any]:
    domain = combine_domains(
        invoice_type_filter("out_invoice"),
        [["state", "=", "posted"]],
        threshold("amount_residual", ">", 0),
        text_filter("partner_id.name", params.get("customer_name")),
        text_filter("invoice_user_id.name", params.get("seller_name")),
    )
    if params.get("company_id"):
        domain.append(["company_id", "=", params["company_id"]])
    return domain


async def _get_debt_by_customer(params: Dict[str, Any], context: SkillContext) -> Result:
    domain = _open_invoices_domain(params)
    queries = [
        SubQuery(
            id="debt",
            model="account.move",
            operation="read_group",
            group_by="partner_id",
            domain=domain,
            amount_field="amount_residual",
            order_by="amount_residual desc",
            limit=params["limit"],
        ),
        SubQuery(
            id="due_dates",
            model="account.move",
            domain=combine_domains(domain, [["invoice_date_due", "!=", False]]),
            fields=["partner_id", "invoice_date_due"],
            order_by="invoice_date_due asc",
            limit=500,
        ),
    ]
    async with erp_client.open_client(context) as erp:
        debt, due_dates = await execute_queries(erp, queries)
    debt.raise_for_error()

    oldest_due: Dict[Any, str] = {}
    for row in due_dates.data:
        partner = many2one(row.get("partner_id"))
        if partner["id"] is not None and partner["id"] not in oldest_due and row.get("invoice_date_due"):
            oldest_due[partner["id"]] = row["invoice_date_due"]

    customers = []
    for group in debt.grouped:
        amount = group["total"] or 0.0
        if group["key"] in (None, False) or amount < params["min_amount"]:
            continue
        due = oldest_due.get(group["key"])
        customers.append(
            {
                "customer_id": group["key"],
                "customer_name": group["name"],
                "invoice_count": group["count"],
                "total_debt": amount,
                "oldest_due_date": due,
                "max_overdue_days": max(0, dates.days_between(due)) if due else 0,
            }
        )

    grand_total = float(debt.total or 0.0)
    summary = f"Deuda de clientes: {format_amount(grand_total)} pendientes en {debt.count} facturas."
    if customers:
        summary += f" Mayor deudor: {customers[0]['customer_name']} con {format_amount(customers[0]['total_debt'])}."
    if debt.upgraded:
        summary += f" Se listan los {len(customers)} mayores deudores."
    summary += " Son CLIENTES que nos deben, no vendedores."
    payload: Dict[str, Any] = {
        "summary": summary,
        "customers": customers,
        "grand_total": grand_total,
        "invoice_count": debt.count,
        "customer_count": len(customers),
    }
    if due_dates.error:
        payload["due_dates_error"] = due_dates.error
    return Result.ok(payload)


get_debt_by_customer = Skill(
    name="get_debt_by_customer",
    description=(
        "Deuda pendiente (facturas publicadas con saldo) agrupada por cliente, de mayor a menor, "
        "con días de atraso de la factura más vieja.\n"
        'USAR PARA: "quién nos debe", "deuda de clientes", "cuentas por cobrar", "saldo de Cliente X", '
        '"deuda por vendedor".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "customer_name": {"type": "string", "minLength": 1},
            "seller_name": {"type": "string", "minLength": 1},
            "company_id": {"type": "integer", "minimum": 1},
            "min_amount": {"type": "number", "minimum": 0, "default": 0},
            "limit": limit_schema(20, 100),
        },
        "additionalProperties": False,
    },
    execute=_get_debt_by_customer,
    tags=["invoices", "debt", "collections", "accounting"],
    priority=9,
)


async def _get_overdue_invoices(params: Dict[str, Any], context: SkillContext) -> Result:
    cutoff = dates.today() - timedelta(days=params["min_days_overdue"])
    query = SubQuery(
        id="overdue",
        model="account.move",
        domain=combine_domains(
            _open_invoices_domain(params),
            [["payment_state", "in", ["not_paid", "partial"]]],
            [["invoice_date_due", "<", cutoff.isoformat()]],
        ),
        fields=["name", "partner_id", "invoice_user_id", "amount_total", "amount_residual", "invoice_date", "invoice_date_due"],
        amount_field="amount_residual",
        order_by="invoice_date_due asc",
        limit=params["limit"],
    )
    async with erp_client.open_client(context) as erp:
        (result,) = await execute_queries(erp, [query])
    result.raise_for_error()

    invoices = []
    for row in result.data:
        partner = many2one(row.get("partner_id"))
        seller = many2one(row.get("invoice_user_id"))
        invoices.append(
            {
                "invoice_id": row.get("id"),
                "invoice_number": row.get("name"),
                "customer_name": partner["name"],
                "seller_name": seller["name"],
                "amount_total": float(row.get("amount_total") or 0.0),
                "amount_residual": float(row.get("amount_residual") or 0.0),
                "due_date": row.get("invoice_date_due"),
                "days_overdue": dates.days_between(row["invoice_date_due"]) if row.get("invoice_date_due") else 0,
            }
        )

    total_overdue = float(result.total or 0.0)
    summary = f"Facturas vencidas: {result.count} por {format_amount(total_overdue)}."
    if len(invoices) < result.count:
        summary += f" Se listan las {len(invoices)} más antiguas."
    return Result.ok(
        {
            "summary": summary,
            "invoices": invoices,
            "total_overdue": total_overdue,
            "total_invoices": result.count,
        }
    )


get_overdue_invoices = Skill(
    name="get_overdue_invoices",
    description=(
        "Facturas de clientes vencidas e impagas, de la más antigua a la más nueva. Filtra por cliente "
        "(customer_name), vendedor (seller_name) o días mínimos de atraso.\n"
        'USAR PARA: "facturas vencidas", "pagos atrasados", "deudores morosos", "facturas vencidas de Cliente X".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "limit": limit_schema(20, 100),
            "min_days_overdue": {"type": "integer", "minimum": 0, "default": 0},
            "customer_name": {"type": "string", "minLength": 1},
            "seller_name": {"type": "string", "minLength": 1},
        },
        "additionalProperties": False,
    },
    execute=_get_overdue_invoices,
    tags=["invoices", "debt", "collections"],
    priority=8,
)


async def _get_payments_received(params: Dict[str, Any], context: SkillContext) -> Result:
    period = resolve_period(params.get("period"))
    domain = combine_domains(
        [["payment_type", "=", "inbound"], ["partner_type", "=", "customer"]],
        text_filter("partner_id.name", params.get("customer_name")),
    )
    queries = [
        SubQuery(id="totals", model="account.payment", operation="aggregate", domain=domain, date_range=period),
        SubQuery(
            id="by_customer",
            model="account.payment",
            operation="read_group",
            group_by="partner_id",
            domain=domain,
            date_range=period,
            limit=params["limit"],
        ),
    ]
    async with erp_client.open_client(context) as erp:
        totals, by_customer = await execute_queries(erp, queries)
    totals.raise_for_error()

    payers = [{"customer_name": g["name"], "count": g["count"], "total": g["total"]} for g in by_customer.grouped]
    total = float(totals.total or 0.0)
    summary = f"Cobranzas {period['label']}: {format_amount(total)} en {totals.count} pagos recibidos."
    payload: Dict[str, Any] = {
        "summary": summary,
        "total": total,
        "count": totals.count,
        "by_customer": payers,
        "period": period,
    }
    if by_customer.error:
        payload["by_customer_error"] = by_customer.error
    return Result.ok(payload)


get_payments_received = Skill(
    name="get_payments_received",
    description=(
        "Pagos recibidos de clientes (cobranzas) en un período: total, cantidad y principales pagadores. "
        "Usa el mes actual por defecto.\n"
        'USAR PARA: "cuánto cobramos", "cobranzas del mes", "pagos recibidos", "quién nos pagó".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "period": period_property(),
            "customer_name": {"type": "string", "minLength": 1},
            "limit": limit_schema(10, 50),
        },
        "additionalProperties": False,
    },
    execute=_get_payments_received,
    tags=["payments", "collections", "accounting"],
    priority=7,
)


SKILLS = [get_debt_by_customer, get_overdue_invoices, get_payments_received]
