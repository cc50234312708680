# pricing_engine.py - Line and order totals under partial price data
"""
Derives unit prices and totals for order lines.

Rules:
- An explicit price_per_unit on a line always wins over catalog data.
- Unpriced lines are matched against the catalog snapshot.
- Lines with only a line_total still count toward the subtotal.
- A backend order_total, when present, is what gets displayed.
- Shipped/paid orders are never re-priced from the catalog at display time.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from catalog_index import CatalogIndex, match
from models import Order, OrderLine, OrderStatus, Product
from utils import to_number

logger = logging.getLogger(__name__)

CatalogLike = Union[CatalogIndex, Iterable[Product], None]


@dataclass(frozen=True)
class OrderPricing:
    subtotal: float
    has_any_price: bool
    display_total: float


def _find_product(line: OrderLine, catalog: CatalogLike) -> Optional[Product]:
    if catalog is None:
        return None
    if isinstance(catalog, CatalogIndex):
        return catalog.match(line.canonical or line.name, line.variant)
    return match(line.canonical or line.name, line.variant, catalog)


def price_line(line: OrderLine, catalog: CatalogLike) -> OrderLine:
    """
    Return a priced copy of the line; the input is not mutated.
    """
    price = to_number(line.price_per_unit)
    line_total = to_number(line.line_total)

    if price is None:
        product = _find_product(line, catalog)
        product_price = to_number(product.price_per_unit) if product else None
        if product_price is not None:
            logger.debug(f"Priced '{line.label}' from catalog '{product.canonical}' at {product_price}")
            return line.copy(
                price_per_unit=product_price,
                line_total=line.pricing_qty * product_price,
            )
        return line.copy(price_per_unit=None, line_total=line_total)

    if line_total is None:
        line_total = line.pricing_qty * price
    return line.copy(price_per_unit=price, line_total=line_total)


def line_contribution(line: OrderLine) -> Optional[float]:
    """Amount a line adds to the subtotal, or None when it carries no price data."""
    price = to_number(line.price_per_unit)
    if price is not None:
        return line.pricing_qty * price
    return to_number(line.line_total)


def price_order(order: Order, lines: Optional[List[OrderLine]] = None) -> OrderPricing:
    """
    Subtotal, price presence and display total for an order.

    `lines` lets callers pass catalog-enriched lines; the order's saved lines
    are used otherwise.
    """
    subtotal = 0.0
    any_price = False
    for line in (order.lines if lines is None else lines):
        amount = line_contribution(line)
        if amount is not None:
            any_price = True
            subtotal += amount

    backend_total = to_number(order.order_total)
    if backend_total is not None:
        any_price = True

    return OrderPricing(
        subtotal=subtotal,
        has_any_price=any_price,
        display_total=backend_total if backend_total is not None else subtotal,
    )


def enrich_order(order: Order, catalog: CatalogLike) -> List[OrderLine]:
    """
    Display-time pricing of an order's lines.
    Frozen and cancelled orders are returned exactly as saved.
    """
    if order.status.is_frozen or order.status == OrderStatus.CANCELLED:
        return [line.copy() for line in order.lines]
    if catalog is None or (isinstance(catalog, CatalogIndex) and not len(catalog)):
        return [line.copy() for line in order.lines]
    return [price_line(line, catalog) for line in order.lines]


def persisted_line_total(line: OrderLine) -> Optional[float]:
    """Saved line_total first, then qty * price when both are known."""
    line_total = to_number(line.line_total)
    if line_total is not None:
        return line_total
    price = to_number(line.price_per_unit)
    if line.qty is not None and price is not None:
        return line.qty * price
    return None


def order_total_from_lines(order: Order) -> Optional[float]:
    """Historical total for past-order listings; None when nothing is priced."""
    total = 0.0
    found = False
    for line in order.lines:
        amount = persisted_line_total(line)
        if amount is not None:
            total += amount
            found = True
    return total if found else None
