import pytest

from catalog_index import CatalogIndex
from conftest import make_order
from models import OrderLine, Product
from pricing_engine import (
    enrich_order,
    line_contribution,
    order_total_from_lines,
    persisted_line_total,
    price_line,
    price_order,
)


def test_onion_line_priced_from_variant(catalog):
    priced = price_line(OrderLine(canonical="Onion", variant="Small", qty=4), catalog)
    assert priced.price_per_unit == 2
    assert priced.line_total == 8


def test_price_line_does_not_mutate_input(catalog):
    line = OrderLine(canonical="tomato", qty=2)
    price_line(line, catalog)
    assert line.price_per_unit is None
    assert line.line_total is None


@pytest.mark.parametrize("products", [
    [],
    [Product(canonical="onion", price_per_unit=99)],
    [Product(canonical="onion", variant="small", price_per_unit=1)],
])
def test_explicit_price_always_wins(products):
    line = OrderLine(canonical="onion", variant="small", qty=3, price_per_unit=10)
    for _ in range(2):
        line = price_line(line, CatalogIndex(products))
        assert line.price_per_unit == 10
    assert line.line_total == 30


def test_explicit_line_total_is_kept():
    line = OrderLine(canonical="onion", qty=3, price_per_unit=10, line_total=25)
    assert price_line(line, []).line_total == 25


def test_missing_qty_prices_as_one(catalog):
    priced = price_line(OrderLine(canonical="tomato"), catalog)
    assert priced.line_total == 4.5


def test_unmatched_line_stays_unpriced(catalog):
    priced = price_line(OrderLine(canonical="bread", qty=2), catalog)
    assert priced.price_per_unit is None
    assert priced.line_total is None


def test_subtotal_mixes_price_and_line_total():
    order = make_order("o1", "2024-05-01T10:00:00Z", lines=[
        OrderLine(canonical="a", price_per_unit=5, qty=2),
        OrderLine(canonical="b", line_total=7),
    ])
    pricing = price_order(order)
    assert pricing.subtotal == 17
    assert pricing.has_any_price
    assert pricing.display_total == 17


def test_no_price_data_means_no_price():
    order = make_order("o1", "2024-05-01T10:00:00Z", lines=[OrderLine(canonical="a", qty=2)])
    pricing = price_order(order)
    assert pricing.subtotal == 0
    assert not pricing.has_any_price


def test_nan_values_are_ignored():
    order = make_order("o1", "2024-05-01T10:00:00Z", lines=[
        OrderLine(canonical="a", qty=1, price_per_unit=float("nan")),
        OrderLine(canonical="b", line_total=float("nan")),
    ])
    assert line_contribution(order.lines[0]) is None
    assert not price_order(order).has_any_price


def test_backend_total_is_displayed():
    order = make_order(
        "o1", "2024-05-01T10:00:00Z",
        lines=[OrderLine(canonical="a", price_per_unit=5, qty=2)],
        order_total=12.5,
    )
    pricing = price_order(order)
    assert pricing.subtotal == 10
    assert pricing.display_total == 12.5


def test_backend_total_alone_counts_as_price():
    order = make_order("o1", "2024-05-01T10:00:00Z", lines=[OrderLine(canonical="a")], order_total=0)
    assert price_order(order).has_any_price


def test_enrich_prices_open_orders(catalog):
    order = make_order("o1", "2024-05-01T10:00:00Z", lines=[OrderLine(canonical="onion", variant="small", qty=4)])
    lines = enrich_order(order, catalog)
    assert lines[0].line_total == 8
    assert order.lines[0].price_per_unit is None


@pytest.mark.parametrize("status", ["shipped", "paid", "cancelled"])
def test_enrich_skips_closed_orders(catalog, status):
    order = make_order("o1", "2024-05-01T10:00:00Z", status=status, lines=[
        OrderLine(canonical="onion", variant="small", qty=4),
    ])
    lines = enrich_order(order, catalog)
    assert lines[0].price_per_unit is None
    assert lines[0] is not order.lines[0]


def test_paid_total_ignores_later_catalog_change():
    order = make_order("o1", "2024-05-01T10:00:00Z", status="paid", lines=[
        OrderLine(canonical="onion", qty=4, price_per_unit=2, line_total=8),
    ])
    before = price_order(order, enrich_order(order, CatalogIndex([Product(canonical="onion", price_per_unit=2)])))
    after = price_order(order, enrich_order(order, CatalogIndex([Product(canonical="onion", price_per_unit=9)])))
    assert before.display_total == after.display_total == 8


def test_enrich_with_empty_catalog_returns_saved_lines():
    order = make_order("o1", "2024-05-01T10:00:00Z", lines=[OrderLine(canonical="onion", qty=1)])
    assert enrich_order(order, CatalogIndex())[0].price_per_unit is None
    assert enrich_order(order, None)[0].price_per_unit is None


def test_persisted_totals_for_history():
    order = make_order("o1", "2024-05-01T10:00:00Z", status="paid", lines=[
        OrderLine(canonical="a", line_total=8),
        OrderLine(canonical="b", qty=2, price_per_unit=1.5),
        OrderLine(canonical="c"),
    ])
    assert persisted_line_total(order.lines[1]) == 3
    assert persisted_line_total(order.lines[2]) is None
    assert order_total_from_lines(order) == 11
    assert order_total_from_lines(make_order("o2", "2024-05-01T10:00:00Z")) is None
