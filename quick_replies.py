# quick_replies.py - Text builders for operator replies to customers
"""
Prefilled WhatsApp texts: order summaries, price and availability answers,
clarify requests, plus the WhatsApp Web deep link and "time ago" labels used
next to conversations.
"""

import re
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional, Union
from urllib.parse import quote

import config
from models import Order, OrderLine
from utils import parse_iso_datetime

logger = logging.getLogger(__name__)

WA_WEB_SEND_URL = "https://web.whatsapp.com/send"
PRICE_PLACEHOLDER = "____"

_WS_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D")


def _tidy(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def _greeting(customer_name: Optional[str]) -> str:
    name = (customer_name or "").strip()
    return f"Hi {name}," if name else "Hi,"


def format_qty(qty: Optional[float]) -> str:
    """2.0 -> '2', 1.5 -> '1.5'; missing quantities read as 1."""
    value = 1.0 if qty is None else qty
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def format_money(amount: Optional[float], currency: Optional[str] = None) -> str:
    return f"{currency or config.CURRENCY} {(amount or 0.0):.2f}"


def describe_line(line: OrderLine) -> str:
    """'2 kg Onion · Brand · Red'."""
    unit = f" {line.unit}" if line.unit else ""
    brand = f" · {line.brand}" if line.brand else ""
    variant = f" · {line.variant}" if line.variant else ""
    return f"{format_qty(line.qty)}{unit} {line.label}{brand}{variant}".strip()


def items_line(lines: Iterable[OrderLine]) -> str:
    """One-line human readable list of an order's items."""
    return " · ".join(describe_line(line) for line in lines)


def build_order_summary_text(
    order: Order,
    lines: Optional[Iterable[OrderLine]] = None,
    total: Optional[float] = None,
    currency: Optional[str] = None,
) -> str:
    """
    Summary message asking the customer to confirm.

    Args:
        order: Order being summarized (used for the customer name)
        lines: Priced lines to list; defaults to the order's saved lines
        total: Amount shown on the Total line; 0.00 when nothing is priced
        currency: Currency code, defaults to config.CURRENCY

    Returns:
        Multi-line message text
    """
    currency = currency or config.CURRENCY
    rows = []
    for idx, line in enumerate(lines if lines is not None else order.lines, start=1):
        described = describe_line(line)
        price = line.price_per_unit
        if price is not None:
            line_total = price * line.pricing_qty
            rows.append(
                f"{idx}) {described} – {format_money(price, currency)} × "
                f"{format_qty(line.qty)} = {format_money(line_total, currency)}"
            )
        else:
            rows.append(f"{idx}) {described}")

    body = "\n".join(rows)
    text = f"{_greeting(order.customer_name)} here is your order summary:\n\n{body}"
    text += f"\n\nTotal: {format_money(total, currency)}\n\nReply YES to confirm."
    return text


def build_price_reply(
    customer_name: Optional[str] = None,
    item: Optional[str] = None,
    price: Optional[Union[str, float]] = None,
    unit: Optional[str] = None,
) -> str:
    """Answer to a price inquiry. Missing price shows a blank for the operator to fill."""
    if isinstance(price, (int, float)):
        price_part = f"{price:.2f}"
    else:
        price_part = (price or "").strip() or PRICE_PLACEHOLDER
    unit_part = f" ({unit})" if unit else ""
    item_label = _tidy(item or "")

    line1 = _tidy(_greeting(customer_name))
    if item_label:
        line2 = _tidy(f"{item_label} – current price is {price_part}{unit_part}.")
    else:
        line2 = _tidy(f"Here’s the price you asked for: {price_part}{unit_part}.")
    line3 = "Let me know if you’d like to place an order."
    return f"{line1}\n{line2}\n{line3}"


def build_availability_reply(
    customer_name: Optional[str] = None,
    item: Optional[str] = None,
    note: Optional[str] = None,
) -> str:
    """Answer to an availability inquiry, e.g. note='Yes, available'."""
    note_part = (note or "").strip() or PRICE_PLACEHOLDER
    item_label = _tidy(item or "")

    line1 = _tidy(_greeting(customer_name))
    line2 = _tidy(f"{item_label}: {note_part}.") if item_label else _tidy(f"Availability: {note_part}.")
    line3 = "Let me know if you'd like to place an order."
    return f"{line1}\n{line2}\n{line3}"


def build_line_price_reply(order: Order, line: OrderLine, currency: Optional[str] = None) -> str:
    """Price of a single order line, sent from the order card."""
    currency = currency or config.CURRENCY
    core = describe_line(line)
    if line.price_per_unit is not None:
        per = f" {line.unit}" if line.unit else " unit"
        return f"{_greeting(order.customer_name)} price for {core} is {format_money(line.price_per_unit, currency)} per{per}."
    return f"{_greeting(order.customer_name)} price for {core} is {format_money(0, currency)} (please adjust if needed)."


def build_clarify_message(order: Order, line: OrderLine, url: str) -> str:
    """Ask the customer to pick the missing brand and/or variant via a link."""
    need_brand = not (line.brand or "").strip()
    need_variant = not (line.variant or "").strip()
    if need_brand and need_variant:
        what = "brand & variant"
    elif need_brand:
        what = "brand"
    else:
        what = "variant"
    return (
        f"{_greeting(order.customer_name)[:-1]}, re: “{line.label}”.\n\n"
        f"Please confirm the {what} here:\n{url}\n\n"
        "Once you choose, we’ll pack it right away."
    )


def build_wa_web_link(phone: Optional[str], text: str) -> str:
    """WhatsApp Web deep link with prefilled text. Phone keeps digits only."""
    digits = _NON_DIGIT_RE.sub("", str(phone or ""))
    encoded = quote(text or "", safe="-_.!~*'()")
    return f"{WA_WEB_SEND_URL}?phone={digits}&text={encoded}"


def time_ago(when: Union[str, datetime, float, int, None], now: Optional[datetime] = None) -> str:
    """
    Compact relative time label: 'just now', '42s ago', '5 mins ago',
    '1 hour ago', '3 days ago', '2 weeks ago'.

    Future timestamps count as 'just now'. Unparseable input gives ''.
    """
    if isinstance(when, (int, float)) and not isinstance(when, bool):
        then = datetime.fromtimestamp(when, tz=timezone.utc)
    else:
        then = parse_iso_datetime(when)
    if then is None:
        return ""
    now = parse_iso_datetime(now) if now is not None else datetime.now(timezone.utc)

    diff = max(0, int((now - then).total_seconds()))
    if diff < 10:
        return "just now"
    if diff < 60:
        return f"{diff}s ago"
    minutes = diff // 60
    if minutes < 60:
        return f"{minutes} min{'s' if minutes > 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    days = hours // 24
    if days < 7:
        return f"{days} day{'s' if days > 1 else ''} ago"
    weeks = days // 7
    return f"{weeks} week{'s' if weeks > 1 else ''} ago"
