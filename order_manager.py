# order_manager.py - Order lifecycle guard (status transitions, price freezing, merges)
"""
Handles every write that changes what an order is worth or where it sits in
its lifecycle.

Features:
- Status state machine: pending -> shipped -> paid, with cancel from pending/shipped.
- Price freezing: moving into shipped or paid first persists the resolved
  unit prices and line totals, so later catalog edits never change the order.
- Manual line edits, auto-priced against the catalog snapshot.
- Merge of a customer's open pending orders into the oldest one.
- Per-order locks so overlapping actions on one order run one after another.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

from api_client import BackendClient, BackendError
from catalog_index import CatalogIndex
from customer_sessions import normalize_phone
from models import Order, OrderLine, OrderStatus
from pricing_engine import price_line
from utils import clean_text, sort_key_for_timestamp

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

FREEZING_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.PAID})

# Statuses only move forward; paid and cancelled are both terminal.
_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.SHIPPED: 1,
    OrderStatus.PAID: 2,
    OrderStatus.CANCELLED: 2,
}


class InvalidTransitionError(ValueError):
    """Requested status is not reachable from the order's current status."""


class FrozenOrderError(ValueError):
    """Lines of a shipped, paid or cancelled order cannot be edited."""


@dataclass
class TransitionResult:
    order_id: str
    from_status: OrderStatus
    to_status: OrderStatus
    changed: bool = True
    froze_pricing: bool = False
    freeze_failed: bool = False
    lines: List[OrderLine] = field(default_factory=list)


@dataclass
class MergeResult:
    survivor_id: Optional[str]
    merged_ids: List[str] = field(default_factory=list)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def clean_lines(lines: Iterable[OrderLine]) -> List[OrderLine]:
    """Trim text fields and drop rows with no product name."""
    cleaned = []
    for line in lines:
        canonical = clean_text(line.canonical)
        name = clean_text(line.name)
        if not (canonical or name):
            continue
        cleaned.append(line.copy(
            canonical=canonical or name,
            name=name,
            unit=clean_text(line.unit),
            brand=clean_text(line.brand),
            variant=clean_text(line.variant),
            notes=clean_text(line.notes),
        ))
    return cleaned


class OrderManager:
    """
    Lifecycle guard for orders.
    Coordinates between the backend client and the catalog snapshot.
    """

    def __init__(self, client: BackendClient, catalog: CatalogIndex):
        self.client = client
        self.catalog = catalog
        self._locks: Dict[str, asyncio.Lock] = {}
        # order id -> last status written through this manager
        self._statuses: Dict[str, OrderStatus] = {}
        logger.info("Initialized OrderManager")

    def _get_lock(self, lock_key: str) -> asyncio.Lock:
        """Get or create the lock for lock_key."""
        if lock_key not in self._locks:
            self._locks[lock_key] = asyncio.Lock()
        return self._locks[lock_key]

    def _current_status(self, order: Order) -> OrderStatus:
        """The further along of the caller's status and the last one written here."""
        known = self._statuses.get(order.id)
        if known is not None and _STATUS_RANK[known] > _STATUS_RANK[order.status]:
            return known
        return order.status

    # --------------------------------------------------
    # STATUS TRANSITIONS
    # --------------------------------------------------

    async def transition(self, order: Order, new_status: Union[OrderStatus, str]) -> TransitionResult:
        """
        Move an order to new_status.

        The guard is checked under the order's lock against the last status
        this manager wrote, so overlapping actions on one order see each
        other's result. On success `order.status` is updated in place.

        Freezing targets (shipped, paid) first write the resolved line prices.
        A failed freeze write is logged and the status change still goes
        ahead; a failed status write raises BackendError.
        """
        if not order or not order.id:
            raise ValueError("order with an id is required")
        target = OrderStatus(new_status)

        async with self._get_lock(order.id):
            current = self._current_status(order)

            if target == current:
                logger.debug(f"Order {order.id} already {current.value}, nothing to do")
                return TransitionResult(order.id, current, target, changed=False, lines=list(order.lines))

            if not can_transition(current, target):
                raise InvalidTransitionError(
                    f"Order {order.id} cannot move from {current.value} to {target.value}"
                )

            result = TransitionResult(order.id, current, target)

            # --- Step 1: Freeze pricing (shipped/paid only) ---
            if target in FREEZING_STATUSES and order.lines:
                frozen_lines = [price_line(line, self.catalog) for line in order.lines]
                result.lines = frozen_lines
                try:
                    await self.client.set_order_lines(
                        order.id, frozen_lines, reason=f"freeze_pricing_on_{target.value}"
                    )
                    result.froze_pricing = True
                    logger.info(f"Froze pricing on {len(frozen_lines)} lines of order {order.id}")
                except BackendError as e:
                    # Status still goes through; the order may now carry unfrozen prices.
                    result.freeze_failed = True
                    logger.error(
                        f"Failed to freeze pricing for order {order.id} before {target.value}; "
                        f"continuing with status change, prices may be stale: {e}"
                    )
            else:
                result.lines = list(order.lines)

            # --- Step 2: Status write ---
            try:
                await self.client.set_order_status(order.id, target)
            except BackendError as e:
                logger.error(f"Failed to update status of order {order.id} to {target.value}: {e}", exc_info=True)
                raise

            self._statuses[order.id] = target
            order.status = target

        logger.info(f"Order {order.id}: {current.value} -> {target.value}")
        return result

    # --------------------------------------------------
    # LINE EDITS
    # --------------------------------------------------

    async def save_lines(
        self, order: Order, lines: Iterable[OrderLine], reason: str = "human_fix"
    ) -> Optional[Order]:
        """
        Manual edit of an open order's lines.
        Unpriced lines are priced from the catalog; explicit prices are kept.
        Returns the backend's updated order, or None when nothing was written.
        """
        self._ensure_editable(order)
        cleaned = [price_line(line, self.catalog) for line in clean_lines(lines)]
        if not cleaned:
            logger.warning(f"No usable lines to save for order {order.id}; skipping write")
            return None

        async with self._get_lock(order.id):
            try:
                updated = await self.client.set_order_lines(order.id, cleaned, reason=reason)
            except BackendError as e:
                logger.error(f"Failed to save lines for order {order.id}: {e}", exc_info=True)
                raise
        logger.info(f"Saved {len(cleaned)} lines on order {order.id} ({reason})")
        return updated

    async def remove_line(self, order: Order, index: int) -> Optional[Order]:
        """Remove one line and write the rest back unchanged."""
        self._ensure_editable(order)
        if index < 0 or index >= len(order.lines):
            raise ValueError(f"Order {order.id} has no line {index}")
        remaining = [line for i, line in enumerate(order.lines) if i != index]

        async with self._get_lock(order.id):
            try:
                updated = await self.client.set_order_lines(order.id, remaining, reason="remove_item")
            except BackendError as e:
                logger.error(f"Failed to remove line {index} from order {order.id}: {e}", exc_info=True)
                raise
        logger.info(f"Removed line {index} from order {order.id}")
        return updated

    def _ensure_editable(self, order: Order) -> None:
        if not order or not order.id:
            raise ValueError("order with an id is required")
        status = self._current_status(order)
        if status.is_frozen or status == OrderStatus.CANCELLED:
            raise FrozenOrderError(f"Order {order.id} is {status.value}; its lines are frozen")

    # --------------------------------------------------
    # MERGE
    # --------------------------------------------------

    async def merge_pending_orders(
        self,
        orders: Iterable[Order],
        refresh: Optional[Callable[[], Awaitable[object]]] = None,
    ) -> MergeResult:
        """
        Collapse one customer's pending orders into the oldest of them.

        Orders are merged newest first, one backend call each, so each merge
        lands on the previous open order. Non-pending orders are ignored.
        A failed merge call stops the sequence and raises BackendError.
        """
        pending = sorted(
            (o for o in orders if o.status == OrderStatus.PENDING),
            key=lambda o: sort_key_for_timestamp(o.created_at),
        )
        if len(pending) < 2:
            return MergeResult(survivor_id=pending[0].id if pending else None)

        phones = {normalize_phone(o.customer_phone) for o in pending}
        if len(phones) > 1:
            raise ValueError("Only orders of a single customer can be merged")

        survivor = pending[0]
        result = MergeResult(survivor_id=survivor.id)

        async with self._get_lock(f"merge:{phones.pop()}"):
            for order in reversed(pending[1:]):
                try:
                    await self.client.merge_order(order.id)
                except BackendError as e:
                    logger.error(
                        f"Merge of order {order.id} failed after {len(result.merged_ids)} merges: {e}",
                        exc_info=True,
                    )
                    raise
                result.merged_ids.append(order.id)
                logger.info(f"Merged order {order.id} into previous open order")

        if refresh is not None:
            await refresh()

        logger.info(f"Merged {len(result.merged_ids)} orders into {survivor.id}")
        return result
