"""Customer lookup."""

from __future__ import annotations

from typing import Any, Dict, List

from .. import erp_client
from ..query import SubQuery, execute_queries
from ..types import Result, Skill, SkillContext, limit_schema


async def _search_customers(params: Dict[str, Any], context: SkillContext) -> Result:
    query = params["query"].strip()
    domain: List[Any] = [
        "|",
        "|",
        ["name", "ilike", query],
        ["vat", "ilike", query],
        ["email", "ilike", query],
        ["customer_rank", ">", 0],
    ]
    if params["active_only"]:
        domain.append(["active", "=", True])
    async with erp_client.open_client(context) as erp:
        (result,) = await execute_queries(
            erp,
            [
                SubQuery(
                    id="customers",
                    model="res.partner",
                    domain=domain,
                    fields=["name", "vat", "email", "phone", "city"],
                    order_by="name asc",
                    limit=params["limit"],
                )
            ],
        )
    result.raise_for_error()

    customers = [
        {
            "customer_id": r.get("id"),
            "name": r.get("name"),
            "vat": r.get("vat") or None,
            "email": r.get("email") or None,
            "phone": r.get("phone") or None,
            "city": r.get("city") or None,
        }
        for r in result.data
    ]
    summary = f"{result.count} clientes coinciden con '{query}'."
    if result.count > len(customers):
        summary += f" Se muestran los primeros {len(customers)}."
    return Result.ok({"summary": summary, "customers": customers, "count": result.count})


search_customers = Skill(
    name="search_customers",
    description=(
        "Busca clientes por nombre, CUIT o email.\n"
        'USAR PARA: "buscar cliente X", "tenemos un cliente llamado", "cliente con CUIT".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "query": {"type": "string", "minLength": 1},
            "limit": limit_schema(10, 50),
            "active_only": {"type": "boolean", "default": True},
        },
        "required": ["query"],
        "additionalProperties": False,
    },
    execute=_search_customers,
    tags=["customers", "search"],
    priority=5,
)


SKILLS = [search_customers]
