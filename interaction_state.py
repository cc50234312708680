# interaction_state.py - Auto-reply and inquiry state per customer
"""
Tracks, for one org, whether the AI auto-reply is on (org-wide and per
customer) and whether each customer has an unanswered inquiry.

Toggles are optimistic: local state changes first, the backend call runs
after, and a failed call puts the old value back and tells the operator.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from api_client import BackendClient, BackendError
from customer_sessions import normalize_phone
from models import Inquiry, InquiryKind, InquiryStatus, InteractionState
from reason_flags import derive_kind_from_parse_reason, inquiry_kind_for

logger = logging.getLogger(__name__)


class BannerAction(str, Enum):
    """Quick action offered on the inquiry banner."""
    OPEN_PRICE_PANEL = "open_price_panel"
    OPEN_AVAILABILITY_PANEL = "open_availability_panel"
    FOCUS_COMPOSER = "focus_composer"


class OptimisticCommand:
    """
    Local change that is shown immediately and confirmed by the backend later.

    apply() mutates local state, commit() performs the backend call and
    rollback() restores the pre-apply state. execute() runs all three in
    order and re-raises the commit error after rolling back.
    """

    def __init__(
        self,
        apply: Callable[[], None],
        commit: Callable[[], Awaitable[object]],
        rollback: Callable[[], None],
        description: str = "",
    ):
        self._apply = apply
        self._commit = commit
        self._rollback = rollback
        self.description = description
        self.applied = False

    def apply(self) -> None:
        self._apply()
        self.applied = True

    async def commit(self) -> object:
        return await self._commit()

    def rollback(self) -> None:
        if self.applied:
            self._rollback()
            self.applied = False

    async def execute(self) -> object:
        self.apply()
        try:
            return await self.commit()
        except Exception:
            logger.warning(f"Rolling back optimistic update: {self.description}")
            self.rollback()
            raise


def _log_notifier(message: str) -> None:
    logger.warning(f"Operator notice: {message}")


class InteractionStateMachine:
    """
    Auto-reply and inquiry state for every customer of one org.
    Customer keys are normalized phone numbers.
    """

    def __init__(
        self,
        client: BackendClient,
        org_id: str,
        org_auto_reply: bool = True,
        notifier: Optional[Callable[[str], None]] = None,
    ):
        if not org_id:
            raise ValueError("org_id is required")
        self.client = client
        self.org_id = org_id
        self.org_auto_reply = org_auto_reply
        self.notify = notifier or _log_notifier
        self._customer_auto_reply: Dict[str, bool] = {}
        self._inquiries: Dict[str, Inquiry] = {}
        # Loading flags, not locks
        self.org_saving = False
        self.customer_saving: Dict[str, bool] = {}

    # --------------------------------------------------
    # Reads
    # --------------------------------------------------

    def auto_reply_for(self, phone: str) -> bool:
        """Per-customer value when known, else the org setting."""
        key = normalize_phone(phone)
        if key and key in self._customer_auto_reply:
            return self._customer_auto_reply[key]
        return self.org_auto_reply

    def inquiry_for(self, phone: str) -> Optional[Inquiry]:
        return self._inquiries.get(normalize_phone(phone))

    def state_for(self, phone: str) -> InteractionState:
        return InteractionState(
            auto_reply_enabled=self.auto_reply_for(phone),
            last_inquiry=self.inquiry_for(phone),
        )

    async def load_customer_state(self, phone: str) -> InteractionState:
        """
        Replace local state for one customer with what the backend holds.
        Without a stored per-customer value the org setting applies.
        """
        key = normalize_phone(phone)
        if not key:
            raise ValueError("phone is required")
        state = await self.client.get_customer_auto_reply(self.org_id, key)
        if state.auto_reply_enabled is None:
            self._customer_auto_reply.pop(key, None)
        else:
            self._customer_auto_reply[key] = state.auto_reply_enabled
        if state.last_inquiry is not None:
            self._inquiries[key] = state.last_inquiry
        else:
            self._inquiries.pop(key, None)
        return self.state_for(key)

    # --------------------------------------------------
    # Auto-reply toggles
    # --------------------------------------------------

    async def toggle_customer_auto_reply(self, phone: str) -> bool:
        """Flip auto-reply for one customer. Returns False when rolled back."""
        key = normalize_phone(phone)
        if not key:
            return False
        return await self._set_customer_auto_reply(key, not self.auto_reply_for(key))

    async def _set_customer_auto_reply(self, key: str, enabled: bool) -> bool:
        had_value = key in self._customer_auto_reply
        previous = self._customer_auto_reply.get(key)

        def apply():
            self._customer_auto_reply[key] = enabled

        def rollback():
            if had_value:
                self._customer_auto_reply[key] = previous
            else:
                self._customer_auto_reply.pop(key, None)

        command = OptimisticCommand(
            apply,
            lambda: self.client.set_customer_auto_reply(self.org_id, key, enabled),
            rollback,
            description=f"auto-reply {'on' if enabled else 'off'} for {key}",
        )
        self.customer_saving[key] = True
        try:
            await command.execute()
            logger.info(f"Auto-reply for {key} set to {enabled}")
            return True
        except BackendError as e:
            logger.error(f"Customer auto-reply toggle failed for {key}: {e}")
            self.notify("Could not update auto-reply for this customer. Please try again.")
            return False
        finally:
            self.customer_saving[key] = False

    async def toggle_org_auto_reply(self) -> bool:
        """Flip the org-wide auto-reply. Returns False when rolled back."""
        previous = self.org_auto_reply
        enabled = not previous

        def apply():
            self.org_auto_reply = enabled

        def rollback():
            self.org_auto_reply = previous

        command = OptimisticCommand(
            apply,
            lambda: self.client.set_org_auto_reply(self.org_id, enabled),
            rollback,
            description=f"org auto-reply {'on' if enabled else 'off'}",
        )
        self.org_saving = True
        try:
            settings = await command.execute()
        except BackendError as e:
            logger.error(f"Org auto-reply toggle failed: {e}")
            self.notify("Could not update auto-reply setting. Please try again.")
            return False
        finally:
            self.org_saving = False

        # Server value wins when it answers with one
        self.org_auto_reply = settings.auto_reply_enabled
        logger.info(f"Org auto-reply set to {self.org_auto_reply}")
        return True

    # --------------------------------------------------
    # Inquiries
    # --------------------------------------------------

    def record_inbound(
        self,
        phone: str,
        text: str,
        parse_reason: Optional[str] = None,
        kind: Optional[InquiryKind] = None,
        canonical: Optional[str] = None,
        at: Optional[str] = None,
    ) -> Optional[Inquiry]:
        """
        Register an inbound message. If it is an inquiry it becomes the
        customer's unresolved inquiry and is returned.

        An explicit kind from the parser is preferred; the parse_reason string
        is only sniffed when no kind is given.
        """
        key = normalize_phone(phone)
        if not key:
            return None
        if kind is None:
            kind = inquiry_kind_for(derive_kind_from_parse_reason(parse_reason))
        if kind is None:
            return None

        inquiry = Inquiry(text=text, kind=kind, canonical=canonical, at=at, status=InquiryStatus.UNRESOLVED)
        self._inquiries[key] = inquiry
        logger.info(f"Unresolved {kind.value} inquiry from {key}")
        return inquiry

    def banner_action(self, phone: str) -> Optional[BannerAction]:
        """Primary quick action for the inquiry banner, None when nothing is open."""
        inquiry = self.inquiry_for(phone)
        if inquiry is None or not inquiry.is_unresolved:
            return None
        if inquiry.kind == InquiryKind.PRICE:
            return BannerAction.OPEN_PRICE_PANEL
        if inquiry.kind == InquiryKind.AVAILABILITY:
            return BannerAction.OPEN_AVAILABILITY_PANEL
        return BannerAction.FOCUS_COMPOSER

    async def send_manual_reply(self, phone: str, text: str) -> None:
        """
        Send an operator reply.

        With an unresolved inquiry open, a human has taken over: auto-reply
        is switched off for the customer and the inquiry is marked resolved.
        A failed resolve call keeps the local resolved state; the next full
        refresh brings it back in line with the backend.
        """
        key = normalize_phone(phone)
        body = (text or "").strip()
        if not key or not body:
            raise ValueError("phone and non-empty text are required")

        await self.client.send_message(self.org_id, phone, body)

        inquiry = self._inquiries.get(key)
        if inquiry is None or not inquiry.is_unresolved:
            return

        if self.auto_reply_for(key):
            await self._set_customer_auto_reply(key, False)

        inquiry.status = InquiryStatus.RESOLVED
        try:
            await self.client.resolve_inquiry(self.org_id, key, inquiry.at, inquiry.canonical)
            logger.info(f"Inquiry from {key} resolved by manual reply")
        except BackendError as e:
            logger.warning(f"Resolve call failed for {key}; keeping local resolved state until refresh: {e}")
