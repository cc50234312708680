# reason_flags.py - Compatibility shim for upstream parse_reason tags
"""
The upstream parser reports what it saw as a free-text reason string such as
"inq:price", "order+inq:availability" or "edited_replace;msgid:abc".

Everything here sniffs substrings of that string, which is fragile: a new
tag spelling upstream silently changes the classification. Callers should
consume the explicit enums (ParsedKind, InquiryKind) and treat this module
as the only place that knows the string format.
"""

import re
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models import InquiryKind

logger = logging.getLogger(__name__)


class ParsedKind(str, Enum):
    ORDER = "order"
    PRICE_INQUIRY = "price_inquiry"
    AVAILABILITY_INQUIRY = "availability_inquiry"
    MENU_REQUEST = "menu_request"
    GREETING = "greeting"
    MIXED_ORDER_PRICE = "mixed_order_price"
    MIXED_ORDER_AVAILABILITY = "mixed_order_availability"
    UNKNOWN = "unknown"


_GREETING_WORD_RE = re.compile(r"\b(greeting|hello|hi)\b")


def derive_kind_from_parse_reason(reason: Optional[str]) -> ParsedKind:
    """Classify a parse_reason string. Order of checks matters."""
    if not reason:
        return ParsedKind.UNKNOWN

    r = reason.strip().lower()

    # Pure inquiries
    if r.startswith("inq:price"):
        return ParsedKind.PRICE_INQUIRY
    if r.startswith("inq:availability"):
        return ParsedKind.AVAILABILITY_INQUIRY
    if r.startswith("inq:menu"):
        return ParsedKind.MENU_REQUEST

    # Greetings / non-order
    if r.startswith("non_order:greeting") or _GREETING_WORD_RE.search(r):
        return ParsedKind.GREETING

    # Mixed messages
    if r.startswith("order+inq:price"):
        return ParsedKind.MIXED_ORDER_PRICE
    if r.startswith("order+inq:availability"):
        return ParsedKind.MIXED_ORDER_AVAILABILITY

    # Pure orders
    if r in ("items_detected", "rule_fallback") or "order" in r:
        return ParsedKind.ORDER

    logger.debug(f"Unrecognized parse_reason: {reason}")
    return ParsedKind.UNKNOWN


def inquiry_kind_for(kind: ParsedKind) -> Optional[InquiryKind]:
    """Collapse a parsed kind to the inquiry banner kind, or None for non-inquiries."""
    if kind in (ParsedKind.PRICE_INQUIRY, ParsedKind.MIXED_ORDER_PRICE):
        return InquiryKind.PRICE
    if kind in (ParsedKind.AVAILABILITY_INQUIRY, ParsedKind.MIXED_ORDER_AVAILABILITY):
        return InquiryKind.AVAILABILITY
    if kind == ParsedKind.MENU_REQUEST:
        return InquiryKind.MENU
    return None


@dataclass(frozen=True)
class ReasonFlags:
    edited: bool
    merged: bool
    inquiry_kind: Optional[str]
    msg_id: Optional[str]
    edited_at: Optional[int]
    raw: str


def _pick(pattern: str, text: str) -> Optional[str]:
    m = re.search(pattern, text, re.IGNORECASE)
    if not m:
        return None
    return (m.group(1) or m.group(0)).strip()


def parse_reason_flags(reason: Optional[str]) -> ReasonFlags:
    """Extract the edit/merge markers and ids embedded in a reason string."""
    raw = str(reason or "")
    low = raw.lower()

    edited_at_str = _pick(r"\bedited_at:(\d{10,})\b", raw)

    return ReasonFlags(
        edited=bool(re.search(r"\bedited_replace\b", low)),
        merged=bool(re.search(r"\bmerged_append\b", low)),
        inquiry_kind=_pick(r"\binq:([a-z0-9_-]+)\b", raw),
        msg_id=_pick(r"\bmsgid:([^\s;]+)", raw),
        edited_at=int(edited_at_str) if edited_at_str else None,
        raw=raw,
    )
