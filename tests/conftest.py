import asyncio
from typing import Dict, List, Optional

import pytest

from api_client import BackendError, ProductPage
from catalog_index import CatalogIndex
from customer_sessions import normalize_phone
from models import (
    Conversation,
    InteractionState,
    Message,
    Order,
    OrderLine,
    OrderStatus,
    OrgSettings,
    Product,
)


class FakeBackend:
    """
    In-memory stand-in for BackendClient.

    Every call is recorded in `calls` as (method, args). Put a method name in
    `fail` to make its next calls raise BackendError. Orders are stored as
    dicts so callers never share objects with the "server".
    """

    def __init__(self, org_id: str = "org-1", auto_reply_enabled: bool = True):
        self.org = OrgSettings(org_id=org_id, auto_reply_enabled=auto_reply_enabled, ingest_mode="waba")
        self.orders: Dict[str, dict] = {}
        self.products: List[Product] = []
        self.customer_auto_reply: Dict[str, bool] = {}
        self.conversations: List[Conversation] = []
        self.messages: Dict[str, List[Message]] = {}
        self.sent: List[tuple] = []
        self.resolved: List[tuple] = []
        self.calls: List[tuple] = []
        self.fail: Dict[str, BackendError] = {}
        # method name -> asyncio.Event the call waits on before answering
        self.gates: Dict[str, asyncio.Event] = {}
        self.closed = False

    async def _enter(self, name: str, *args):
        self.calls.append((name, args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.fail:
            raise self.fail[name]

    def calls_to(self, name: str) -> List[tuple]:
        return [args for method, args in self.calls if method == name]

    def add_order(self, order: Order) -> Order:
        self.orders[order.id] = order.to_dict()
        return order

    def order(self, order_id: str) -> Order:
        return Order.from_dict(self.orders[order_id])

    # --- Org ---

    async def me(self) -> OrgSettings:
        await self._enter("me")
        return OrgSettings(**vars(self.org))

    async def set_org_auto_reply(self, org_id: str, enabled: bool) -> OrgSettings:
        await self._enter("set_org_auto_reply", org_id, enabled)
        self.org.auto_reply_enabled = enabled
        return OrgSettings(**vars(self.org))

    # --- Orders ---

    async def list_orders(self) -> List[Order]:
        await self._enter("list_orders")
        return [Order.from_dict(data) for data in self.orders.values()]

    async def set_order_lines(self, order_id: str, lines: List[OrderLine], reason: str) -> Optional[Order]:
        await self._enter("set_order_lines", order_id, [line.copy() for line in lines], reason)
        self.orders[order_id]["items"] = [line.to_dict() for line in lines]
        return self.order(order_id)

    async def set_order_status(self, order_id: str, status: OrderStatus) -> None:
        await self._enter("set_order_status", order_id, status)
        self.orders[order_id]["status"] = OrderStatus(status).value

    async def merge_order(self, order_id: str) -> None:
        """Append the order's lines to the previous open order of the same phone."""
        await self._enter("merge_order", order_id)
        source = self.order(order_id)
        older = [
            self.order(oid) for oid in self.orders
            if oid != order_id
            and self.orders[oid]["status"] == "pending"
            and normalize_phone(self.orders[oid]["customer_phone"]) == normalize_phone(source.customer_phone)
            and self.orders[oid]["created_at"] < source.created_at
        ]
        if not older:
            raise BackendError("no previous open order", status_code=404)
        target = max(older, key=lambda o: o.created_at)
        self.orders[target.id]["items"].extend(line.to_dict() for line in source.lines)
        del self.orders[order_id]

    # --- Catalog ---

    async def list_products(self, filters=None) -> ProductPage:
        await self._enter("list_products", filters)
        return ProductPage(items=list(self.products), total=len(self.products))

    async def list_all_products(self, search=None) -> List[Product]:
        await self._enter("list_all_products", search)
        return list(self.products)

    # --- Inbox ---

    async def get_customer_auto_reply(self, org_id: str, phone: str) -> InteractionState:
        await self._enter("get_customer_auto_reply", org_id, phone)
        return InteractionState(auto_reply_enabled=self.customer_auto_reply.get(phone))

    async def set_customer_auto_reply(self, org_id: str, phone: str, enabled: bool) -> None:
        await self._enter("set_customer_auto_reply", org_id, phone, enabled)
        self.customer_auto_reply[phone] = enabled

    async def resolve_inquiry(self, org_id, phone, inquiry_at, canonical) -> None:
        await self._enter("resolve_inquiry", org_id, phone, inquiry_at, canonical)
        self.resolved.append((phone, inquiry_at, canonical))

    async def send_message(self, org_id: str, phone: str, text: str) -> None:
        await self._enter("send_message", org_id, phone, text)
        self.sent.append((phone, text))

    async def list_conversations(self, org_id: str) -> List[Conversation]:
        await self._enter("list_conversations", org_id)
        return list(self.conversations)

    async def list_messages(self, org_id: str, phone: str) -> List[Message]:
        await self._enter("list_messages", org_id, phone)
        return list(self.messages.get(phone, []))

    async def close(self):
        self.closed = True


def make_order(
    order_id: str,
    created_at: str,
    status: str = "pending",
    phone: Optional[str] = "+971501234567",
    lines: Optional[List[OrderLine]] = None,
    **extra,
) -> Order:
    return Order(
        id=order_id,
        created_at=created_at,
        status=OrderStatus(status),
        customer_phone=phone,
        lines=list(lines or []),
        **extra,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def onion_products() -> List[Product]:
    return [
        Product(canonical="onion", variant="big", price_per_unit=3),
        Product(canonical="onion", variant="small", price_per_unit=2),
    ]


@pytest.fixture
def catalog(onion_products) -> CatalogIndex:
    return CatalogIndex(
        onion_products
        + [
            Product(canonical="tomato", price_per_unit=4.5),
            Product(canonical="milk", variant="1L", brand="Al Rawabi", price_per_unit=6),
            Product(canonical="old stock", price_per_unit=1, is_active=False),
        ]
    )
