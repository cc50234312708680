# customer_sessions.py - Per-customer views over the org's order list
"""
Groups orders by customer phone and works out which order the operator
should be looking at.

Nothing here is persisted; views are recomputed from the latest order list
every time the list or the selected conversation changes.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from models import Order, OrderStatus
from utils import sort_key_for_timestamp

logger = logging.getLogger(__name__)

_NON_DIGIT_RE = re.compile(r"\D")

NEEDS_HELP_HINTS = (
    "needs_help",
    "need_help",
    "update_order",
    "update-order",
    "human_fix",
    "human-review",
    "manual_review",
    "human review",
)

PAST_STATUS_FILTERS = ("paid", "cancelled", "all")


def normalize_phone(value: Optional[str]) -> str:
    """Digits only. Note: two empty results compare equal."""
    return _NON_DIGIT_RE.sub("", str(value)) if value else ""


def newest_first(orders: Iterable[Order]) -> List[Order]:
    return sorted(orders, key=lambda o: sort_key_for_timestamp(o.created_at), reverse=True)


@dataclass
class CustomerSession:
    phone: str
    all: List[Order] = field(default_factory=list)
    live: List[Order] = field(default_factory=list)
    past: List[Order] = field(default_factory=list)
    active: Optional[Order] = None

    @property
    def pending(self) -> List[Order]:
        return [o for o in self.live if o.status == OrderStatus.PENDING]

    @property
    def needs_merge(self) -> bool:
        """Two or more live orders: the operator should be offered a merge."""
        return len(self.live) >= 2


def session_for(
    phone: Optional[str], orders: Iterable[Order], selected_order_id: Optional[str] = None
) -> CustomerSession:
    """
    Build the customer view for one phone number.

    active is the pinned order when it still exists, otherwise the newest
    live order. It never falls back to a paid or cancelled order.
    """
    key = normalize_phone(phone)
    mine = newest_first(o for o in orders if normalize_phone(o.customer_phone) == key)
    live = [o for o in mine if o.status.is_live]
    past = [o for o in mine if not o.status.is_live]

    active = None
    if selected_order_id:
        active = next((o for o in mine if o.id == selected_order_id), None)
        if active is None:
            logger.debug(f"Pinned order {selected_order_id} no longer in session for {key}")
    if active is None and live:
        active = live[0]

    return CustomerSession(phone=key, all=mine, live=live, past=past, active=active)


def group_by_customer(orders: Iterable[Order]) -> Dict[str, List[Order]]:
    """Orders keyed by normalized phone, newest first within each customer."""
    groups: Dict[str, List[Order]] = {}
    for order in newest_first(orders):
        groups.setdefault(normalize_phone(order.customer_phone), []).append(order)
    return groups


def needs_help(order: Optional[Order]) -> bool:
    """Parser/link reasons that ask for a human to look at the order."""
    if not order:
        return False
    blob = f"{order.parse_reason or ''} {order.link_reason or ''}".lower()
    return any(hint in blob for hint in NEEDS_HELP_HINTS)


def past_orders(orders: Iterable[Order], status_filter: str = "paid", search: str = "") -> List[Order]:
    """
    Closed orders for the history view.

    status_filter is one of 'paid', 'cancelled' or 'all'; search matches
    customer name, phone or raw message text, case-insensitively.
    """
    if status_filter not in PAST_STATUS_FILTERS:
        raise ValueError(f"status_filter must be one of {PAST_STATUS_FILTERS}")

    closed = [o for o in orders if not o.status.is_live]
    if status_filter != "all":
        closed = [o for o in closed if o.status.value == status_filter]

    q = (search or "").strip().lower()
    if q:
        closed = [
            o for o in closed
            if q in (o.customer_name or "").lower()
            or q in (o.customer_phone or "").lower()
            or q in (o.raw_text or "").lower()
        ]
    return newest_first(closed)
