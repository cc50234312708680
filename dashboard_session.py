# dashboard_session.py - One operator's working session against the backend
"""
Bundles everything a dashboard view needs: org settings, the backend
client, the catalog snapshot, the lifecycle guard, the interaction state
machine and the inbox feed.

Usage:
    async with DashboardSession(client=client) as session:
        view = session.current_session()
        pricing = session.pricing_for(view.active)

    python dashboard_session.py    # log in from .env and follow the inbox
"""

import asyncio
import logging
from typing import Callable, List, Optional

import config
from api_client import BackendClient, BackendError
from catalog_index import CatalogIndex
from customer_sessions import CustomerSession, session_for
from inbox_manager import InboxManager
from interaction_state import InteractionStateMachine
from models import Order, OrderLine, OrgSettings
from order_manager import MergeResult, OrderManager
from pricing_engine import OrderPricing, enrich_order, price_order
from utils import setup_logging

logger = logging.getLogger(__name__)


class DashboardSession:

    def __init__(
        self,
        client: Optional[BackendClient] = None,
        notifier: Optional[Callable[[str], None]] = None,
    ):
        if client is None:
            config.validate_environment()
            client = BackendClient()
        self.client = client
        self.notifier = notifier
        self.catalog = CatalogIndex()
        self.order_manager = OrderManager(self.client, self.catalog)
        self.org: Optional[OrgSettings] = None
        self.interactions: Optional[InteractionStateMachine] = None
        self.inbox: Optional[InboxManager] = None
        self.orders: List[Order] = []
        self.selected_order_id: Optional[str] = None

    async def open(self) -> "DashboardSession":
        """Load org settings, catalog and orders, then build the per-org managers."""
        logger.info("Opening dashboard session")

        # 1. Org settings
        self.org = await self.client.me()
        if not self.org.org_id:
            raise BackendError("Backend did not report an org for this session")

        # 2. Catalog snapshot; a failure leaves saved prices as the only source
        try:
            await self.catalog.refresh(self.client.list_all_products)
        except BackendError as e:
            logger.warning(f"Starting without a catalog snapshot: {e}")

        # 3. Per-org managers
        self.interactions = InteractionStateMachine(
            self.client,
            self.org.org_id,
            org_auto_reply=self.org.auto_reply_enabled,
            notifier=self.notifier,
        )
        self.inbox = InboxManager(self.client, self.org.org_id)

        # 4. Orders
        await self.refresh_orders()

        logger.info(
            f"Session ready for org {self.org.org_id} ({self.org.ingest_mode}): "
            f"{len(self.catalog)} products, {len(self.orders)} orders"
        )
        return self

    async def close(self) -> None:
        await self.client.close()
        logger.info("Dashboard session closed")

    async def __aenter__(self) -> "DashboardSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --------------------------------------------------
    # Data refresh
    # --------------------------------------------------

    async def refresh_orders(self) -> List[Order]:
        self.orders = await self.client.list_orders()
        logger.debug(f"Loaded {len(self.orders)} orders")
        return self.orders

    async def refresh_catalog(self) -> None:
        await self.catalog.refresh(self.client.list_all_products)

    # --------------------------------------------------
    # Views
    # --------------------------------------------------

    def select_order(self, order_id: Optional[str]) -> None:
        """Pin an order as the active one; None goes back to the newest live order."""
        self.selected_order_id = order_id

    def _selected_phone(self) -> Optional[str]:
        if self.inbox and self.inbox.selected:
            return self.inbox.selected.customer_phone
        return None

    def current_session(self, phone: Optional[str] = None) -> CustomerSession:
        """Customer view for `phone`, or for the selected conversation."""
        return session_for(phone or self._selected_phone(), self.orders, self.selected_order_id)

    def enriched_lines(self, order: Order) -> List[OrderLine]:
        return enrich_order(order, self.catalog)

    def pricing_for(self, order: Order) -> OrderPricing:
        return price_order(order, self.enriched_lines(order))

    # --------------------------------------------------
    # Actions
    # --------------------------------------------------

    async def merge_current_customer_orders(self, phone: Optional[str] = None) -> MergeResult:
        """Merge every pending order of the current customer into the oldest one."""
        view = self.current_session(phone)
        result = await self.order_manager.merge_pending_orders(view.all, refresh=self.refresh_orders)
        self.selected_order_id = result.survivor_id
        return result

    async def send_reply(self, text: str) -> None:
        """Send an operator message in the selected conversation."""
        phone = self._selected_phone()
        if not phone:
            raise ValueError("No conversation selected")
        if not (text or "").strip():
            raise ValueError("Reply text is empty")
        echo = self.inbox.add_local_echo(text.strip())
        try:
            await self.interactions.send_manual_reply(phone, text)
        except BackendError as e:
            self.inbox.drop_local_echo(echo)
            logger.error(f"Reply to {phone} was not sent: {e}")
            raise
        await self.inbox.refresh_messages()


async def run_dashboard(
    client: Optional[BackendClient] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Open a session and follow the inbox until stop_event is set."""
    async with DashboardSession(client=client) as session:
        await session.inbox.refresh_conversations()
        await session.inbox.run_polling(stop_event=stop_event)


def main() -> None:
    setup_logging()
    try:
        asyncio.run(run_dashboard())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
