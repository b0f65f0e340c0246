from __future__ import annotations

import asyncio

import pytest

from helpers import FakeErp, sales_orders
from switchboard.skills.query import (
    SubQuery,
    build_domain,
    combine_domains,
    execute_queries,
    execute_query,
    state_filter,
    text_filter,
    threshold,
)


def _purchase_rows(count: int):
    return [
        {"id": i, "name": f"P{i:05d}", "partner_id": [7, "Proveedor Uno"], "state": "purchase", "amount_total": 100.0}
        for i in range(1, count + 1)
    ]


def test_full_page_upgrades_to_server_side_totals() -> None:
    erp = FakeErp({"purchase.order": _purchase_rows(76)})
    result = asyncio.run(execute_query(erp, SubQuery(id="compras", model="purchase.order", limit=50)))

    assert result.upgraded is True
    assert len(result.data) == 50
    assert result.count == 76
    assert result.total == pytest.approx(7600.0)
    assert ("read_group", "purchase.order", [], None) in erp.calls


def test_partial_page_is_counted_locally() -> None:
    erp = FakeErp({"purchase.order": _purchase_rows(10)})
    result = asyncio.run(execute_query(erp, SubQuery(id="compras", model="purchase.order", limit=50)))

    assert result.upgraded is False
    assert result.count == 10
    assert result.total == pytest.approx(1000.0)
    assert [c[0] for c in erp.calls] == ["search_read"]


def test_amount_field_override_drives_population_totals() -> None:
    rows = [
        {"id": i, "partner_id": [3, "Cliente"], "amount_total": 500.0, "amount_residual": 200.0}
        for i in range(1, 31)
    ]
    erp = FakeErp({"account.move": rows})
    query = SubQuery(id="deuda", model="account.move", amount_field="amount_residual", limit=20)
    result = asyncio.run(execute_query(erp, query))

    assert result.upgraded is True
    assert len(result.data) == 20
    assert result.count == 30
    assert result.total == pytest.approx(6000.0)


def test_extra_sum_fields_are_totalled_per_group_and_overall() -> None:
    lines = [
        {"id": 1, "product_id": [10, "Tornillo"], "price_total": 300.0, "product_uom_qty": 30.0},
        {"id": 2, "product_id": [10, "Tornillo"], "price_total": 200.0, "product_uom_qty": 20.0},
        {"id": 3, "product_id": [11, "Tuerca"], "price_total": 100.0, "product_uom_qty": 50.0},
    ]
    erp = FakeErp({"sale.order.line": lines})
    query = SubQuery(
        id="productos",
        model="sale.order.line",
        operation="read_group",
        group_by="product_id",
        sum_fields=["product_uom_qty"],
        limit=10,
    )
    result = asyncio.run(execute_query(erp, query))

    assert result.grouped[0] == {"key": 10, "name": "Tornillo", "count": 2, "total": 500.0, "product_uom_qty": 50.0}
    assert result.total == pytest.approx(600.0)
    assert result.sums == {"product_uom_qty": 100.0}
    assert result.to_dict()["sums"] == {"product_uom_qty": 100.0}


def test_aggregate_without_group_returns_population() -> None:
    erp = FakeErp({"sale.order": sales_orders(4)})
    result = asyncio.run(execute_query(erp, SubQuery(id="total", model="sale.order", operation="aggregate")))
    assert result.count == 4
    assert result.total == pytest.approx(1000.0)
    assert result.data == []


def test_read_group_orders_groups() -> None:
    erp = FakeErp({"sale.order": sales_orders(4)})
    query = SubQuery(id="clientes", model="sale.order", operation="readGroup", group_by="partner_id", limit=10)
    result = asyncio.run(execute_query(erp, query))

    assert query.operation == "read_group"
    assert [g["name"] for g in result.grouped] == ["Ferretería Norte", "Distribuidora Sur"]
    assert result.grouped[0] == {"key": 1, "name": "Ferretería Norte", "count": 3, "total": 750.0}
    assert result.count == 4
    assert result.total == pytest.approx(1000.0)
    assert result.upgraded is False


def test_read_group_truncated_groups_upgrade() -> None:
    erp = FakeErp({"sale.order": sales_orders(4)})
    query = SubQuery(id="clientes", model="sale.order", operation="read_group", group_by="partner_id", limit=1)
    result = asyncio.run(execute_query(erp, query))
    assert len(result.grouped) == 1
    assert result.upgraded is True
    assert result.count == 4


def test_failures_are_captured_not_raised() -> None:
    erp = FakeErp({}, fail_with=RuntimeError("RPC error: Access Denied"))
    result = asyncio.run(execute_query(erp, SubQuery(id="x", model="sale.order")))
    assert result.error == "Access Denied"
    with pytest.raises(RuntimeError):
        result.raise_for_error()


def test_execute_queries_keeps_input_order() -> None:
    erp = FakeErp({"sale.order": sales_orders(3), "purchase.order": _purchase_rows(2)})
    results = asyncio.run(
        execute_queries(
            erp,
            [
                SubQuery(id="compras", model="purchase.order"),
                SubQuery(id="ventas", model="sale.order", operation="aggregate"),
            ],
        )
    )
    assert [r.id for r in results] == ["compras", "ventas"]
    assert results[1].count == 3


def test_build_domain_adds_dates_and_confirmed_state() -> None:
    query = SubQuery(
        id="q",
        model="sale.order",
        domain=text_filter("partner_id.name", "norte"),
        date_range={"start": "2026-01-01", "end": "2026-01-20"},
    )
    assert build_domain(query) == [
        ["partner_id.name", "ilike", "norte"],
        ["date_order", ">=", "2026-01-01"],
        ["date_order", "<=", "2026-01-20"],
        ["state", "in", ["sale", "done"]],
    ]


def test_explicit_state_replaces_default() -> None:
    query = SubQuery(id="q", model="sale.order", domain=state_filter("draft", "sale.order"))
    assert build_domain(query) == [["state", "=", "draft"]]
    assert build_domain(SubQuery(id="q", model="sale.order", default_state=False)) == []


def test_domain_builders() -> None:
    assert state_filter("all", "sale.order") == []
    assert state_filter("confirmed", "account.move") == [["state", "=", "posted"]]
    assert text_filter("name", "  ") == []
    assert threshold("amount_residual", ">", None) == []
    with pytest.raises(ValueError):
        threshold("amount_residual", "~", 1)
    assert combine_domains(["|"], [["a", "=", 1], ["b", "=", 2]], None) == ["|", ["a", "=", 1], ["b", "=", 2]]


def test_invalid_sub_query() -> None:
    with pytest.raises(ValueError):
        SubQuery(id="q", model="sale.order", operation="delete")
    with pytest.raises(ValueError):
        SubQuery(id="q", model="sale.order", limit=0)
