"""Inventory skills."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .. import erp_client
from ..query import SubQuery, execute_queries, threshold
from ..types import Result, Skill, SkillContext, limit_schema

LOW_STOCK_SCAN_LIMIT = 500


async def _get_product_stock(params: Dict[str, Any], context: SkillContext) -> Result:
    async with erp_client.open_client(context) as erp:
        product_ids: Optional[List[int]] = None
        search = params.get("product_search")
        if search:
            (matches,) = await execute_queries(
                erp,
                [
                    SubQuery(
                        id="products",
                        model="product.product",
                        domain=["|", ["name", "ilike", search], ["default_code", "ilike", search]],
                        fields=["id", "name"],
                        limit=50,
                    )
                ],
            )
            matches.raise_for_error()
            if not matches.data:
                return Result.ok(
                    {
                        "summary": f"No hay productos que coincidan con '{search}'.",
                        "products": [],
                        "total_quantity": 0.0,
                        "product_count": 0,
                        "truncated": False,
                    }
                )
            product_ids = [m["id"] for m in matches.data]

        domain: List[Any] = []
        if product_ids:
            domain.append(["product_id", "in", product_ids])
        if params.get("location_id"):
            domain.append(["location_id", "=", params["location_id"]])
        if params.get("low_stock_threshold") is not None:
            domain += threshold("quantity", "<=", params["low_stock_threshold"])
            domain += threshold("quantity", ">=", 0)
        else:
            domain += threshold("quantity", ">", 0)

        (result,) = await execute_queries(
            erp,
            [
                SubQuery(
                    id="stock",
                    model="stock.quant",
                    operation="read_group",
                    group_by="product_id",
                    domain=domain,
                    order_by="quantity desc",
                    limit=params["limit"],
                )
            ],
        )
    result.raise_for_error()

    products = [{"product_id": g["key"], "product_name": g["name"], "quantity": g["total"] or 0.0} for g in result.grouped]
    total_quantity = float(result.total or 0.0)
    if result.upgraded:
        summary = (
            f"Stock: {total_quantity:g} unidades en total. "
            f"Se listan los {len(products)} productos con más existencias; hay más productos con stock."
        )
    else:
        summary = f"Stock: {len(products)} productos con {total_quantity:g} unidades en total."
    return Result.ok(
        {
            "summary": summary,
            "products": products,
            "total_quantity": total_quantity,
            "product_count": len(products),
            "truncated": result.upgraded,
        }
    )


get_product_stock = Skill(
    name="get_product_stock",
    description=(
        "Stock disponible por producto (existencias reales en depósito). Busca por nombre o código.\n"
        'USAR PARA: "stock", "inventario", "cuánto tenemos de X", "existencias", "stock disponible".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "product_search": {"type": "string", "minLength": 1},
            "location_id": {"type": "integer", "minimum": 1},
            "low_stock_threshold": {"type": "number", "minimum": 0},
            "limit": limit_schema(20, 100),
        },
        "additionalProperties": False,
    },
    execute=_get_product_stock,
    tags=["stock", "inventory", "products", "warehouse"],
    priority=10,
)


async def _get_low_stock_products(params: Dict[str, Any], context: SkillContext) -> Result:
    domain: List[Any] = [["type", "=", "product"]] if params["stockable_only"] else []
    async with erp_client.open_client(context) as erp:
        # qty_available is computed server-side and cannot be filtered or ordered on
        (scan,) = await execute_queries(
            erp,
            [
                SubQuery(
                    id="products",
                    model="product.product",
                    domain=domain,
                    fields=["name", "default_code", "qty_available", "virtual_available"],
                    limit=LOW_STOCK_SCAN_LIMIT,
                )
            ],
        )
    scan.raise_for_error()

    low = sorted(
        (r for r in scan.data if float(r.get("qty_available") or 0.0) <= params["threshold"]),
        key=lambda r: float(r.get("qty_available") or 0.0),
    )
    total = len(low)
    products = [
        {
            "product_id": r.get("id"),
            "product_name": r.get("name"),
            "product_code": r.get("default_code") or None,
            "qty_available": float(r.get("qty_available") or 0.0),
            "virtual_available": float(r.get("virtual_available") or 0.0),
        }
        for r in low[: params["limit"]]
    ]
    if products:
        summary = (
            f"{total} productos con stock bajo (umbral {params['threshold']:g}). "
            f"El más crítico es {products[0]['product_name']} con {products[0]['qty_available']:g} unidades."
        )
        if total > len(products):
            summary += f" Se listan los {len(products)} más críticos."
    else:
        summary = "No hay productos bajo el umbral de stock."
    if scan.upgraded:
        summary += f" Se revisaron {len(scan.data)} de {scan.count} productos."
    return Result.ok(
        {
            "summary": summary,
            "products": products,
            "total": total,
            "threshold": params["threshold"],
            "scanned": len(scan.data),
            "catalog_size": scan.count,
        }
    )


get_low_stock_products = Skill(
    name="get_low_stock_products",
    description=(
        "Productos con stock bajo o crítico, del más crítico al menos crítico.\n"
        'USAR PARA: "qué productos tienen poco stock", "stock bajo", "productos agotados", "reposición".'
    ),
    tool="erp",
    input_schema={
        "type": "object",
        "properties": {
            "threshold": {"type": "number", "minimum": 0, "default": 10},
            "limit": limit_schema(20, 100),
            "stockable_only": {"type": "boolean", "default": True},
        },
        "additionalProperties": False,
    },
    execute=_get_low_stock_products,
    tags=["inventory", "stock", "purchasing"],
    priority=8,
)


SKILLS = [get_product_stock, get_low_stock_products]
