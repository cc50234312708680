# inbox_manager.py
"""
Polled conversation feed for the operator inbox.

Keeps the conversation list and the message thread of the selected
conversation fresh by polling the backend. Responses that arrive after the
operator has switched to another conversation are thrown away.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import config
from api_client import AuthenticationError, BackendClient, BackendError
from models import Conversation, Message
from utils import sort_key_for_timestamp

logger = logging.getLogger(__name__)

LOCAL_ECHO_PREFIX = "local-"


def merge_messages(existing: Iterable[Message], incoming: Iterable[Message]) -> List[Message]:
    """
    Union of two message lists without duplicates.

    Two messages are the same when direction, text and timestamp match. The
    first occurrence wins; the result is ordered by timestamp, keeping
    arrival order for equal timestamps.
    """
    seen = set()
    merged = []
    for message in list(existing) + list(incoming):
        if message.dedupe_key in seen:
            continue
        seen.add(message.dedupe_key)
        merged.append(message)
    return sorted(merged, key=lambda m: sort_key_for_timestamp(m.ts))


def thread_status(messages: List[Message]) -> str:
    """'new' when the customer spoke last, 'replied' when the store did, 'pending' when empty."""
    if not messages:
        return "pending"
    return "new" if messages[-1].direction == "in" else "replied"


class InboxManager:

    def __init__(self, client: BackendClient, org_id: str):
        if not org_id:
            raise ValueError("org_id is required")
        self.client = client
        self.org_id = org_id
        self.conversations: List[Conversation] = []
        self.selected: Optional[Conversation] = None
        self.messages: List[Message] = []
        self._selection_token = 0
        logger.info(f"InboxManager initialized for org {org_id}")

    # --- Conversations ---

    async def refresh_conversations(self) -> List[Conversation]:
        """Reload the conversation list; picks the first one when nothing is selected."""
        conversations = await self.client.list_conversations(self.org_id)
        self.conversations = conversations
        if self.selected is None and conversations:
            logger.debug(f"Auto-selecting conversation {conversations[0].id}")
            self.select(conversations[0])
        return conversations

    def select(self, conversation: Optional[Conversation]) -> None:
        """Switch the open thread. In-flight message loads for the old one become stale."""
        self._selection_token += 1
        self.selected = conversation
        self.messages = []

    # --- Messages ---

    async def refresh_messages(self) -> Optional[List[Message]]:
        """
        Reload the selected thread.

        Returns the new message list, or None when nothing is selected or
        the selection changed while the request was in flight.
        """
        if self.selected is None:
            return None
        token = self._selection_token
        phone = self.selected.customer_phone

        incoming = await self.client.list_messages(self.org_id, phone)

        if token != self._selection_token:
            logger.debug(f"Discarding stale messages for {phone}; selection changed")
            return None

        # Local echoes stay until the backend returns the real message
        sent_texts = {m.text for m in incoming if m.direction == "out"}
        echoes = [
            m for m in self.messages
            if m.id.startswith(LOCAL_ECHO_PREFIX) and m.text not in sent_texts
        ]
        self.messages = merge_messages(incoming, echoes)
        return self.messages

    def add_local_echo(self, text: str) -> Message:
        """Show an outbound message before the backend confirms it."""
        now = datetime.now(timezone.utc)
        echo = Message(
            id=f"{LOCAL_ECHO_PREFIX}{int(now.timestamp() * 1000)}",
            direction="out",
            text=text,
            ts=now.isoformat(),
        )
        self.messages = merge_messages(self.messages, [echo])
        return echo

    def drop_local_echo(self, echo: Message) -> None:
        """Take back an echo whose send failed."""
        self.messages = [m for m in self.messages if (m.id, m.text) != (echo.id, echo.text)]

    def thread_status(self) -> str:
        return thread_status(self.messages)

    # --- Polling ---

    async def _poll(self, name: str, refresh, interval: float, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await refresh()
            except AuthenticationError:
                logger.error(f"{name} polling stopped: session is no longer authorized")
                stop_event.set()
                raise
            except BackendError as e:
                logger.warning(f"{name} poll failed, will retry in {interval}s: {e}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def run_polling(
        self,
        interval: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
        conversation_interval: Optional[float] = None,
    ) -> None:
        """
        Poll messages every `interval` seconds and conversations every
        `conversation_interval` seconds until stop_event is set.

        A failed cycle is logged and the next one runs as scheduled.
        """
        stop_event = stop_event or asyncio.Event()
        message_every = interval or config.MESSAGE_POLL_SECONDS
        conversation_every = conversation_interval or config.CONVERSATION_POLL_SECONDS
        logger.info(
            f"Inbox polling started (messages every {message_every}s, "
            f"conversations every {conversation_every}s)"
        )
        await asyncio.gather(
            self._poll("Conversation", self.refresh_conversations, conversation_every, stop_event),
            self._poll("Message", self.refresh_messages, message_every, stop_event),
        )
        logger.info("Inbox polling stopped")
