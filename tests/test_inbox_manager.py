import asyncio

import pytest

from api_client import AuthenticationError, BackendError
from inbox_manager import InboxManager, merge_messages, thread_status
from models import Conversation, Message


def msg(id, direction, text, ts):
    return Message(id=id, direction=direction, text=text, ts=ts)


@pytest.fixture
def inbox(backend):
    backend.conversations = [
        Conversation(id="c1", customer_phone="+971500000001", customer_name="Ali"),
        Conversation(id="c2", customer_phone="+971500000002"),
    ]
    backend.messages["+971500000001"] = [
        msg("1", "in", "hi", "2024-05-01T10:00:00Z"),
        msg("2", "out", "hello!", "2024-05-01T10:01:00Z"),
    ]
    backend.messages["+971500000002"] = [msg("3", "in", "price?", "2024-05-01T11:00:00Z")]
    return InboxManager(backend, "org-1")


def test_merge_dedupes_on_direction_text_and_time():
    a = [msg("1", "in", "hi", "2024-05-01T10:00:00Z"), msg("2", "out", "ok", "2024-05-01T10:02:00Z")]
    b = [msg("x", "in", "hi", "2024-05-01T10:00:00Z"), msg("3", "in", "hi", "2024-05-01T10:05:00Z")]
    merged = merge_messages(a, b)
    assert [m.id for m in merged] == ["1", "2", "3"]


def test_thread_status():
    assert thread_status([]) == "pending"
    assert thread_status([msg("1", "out", "a", "t"), msg("2", "in", "b", "t")]) == "new"
    assert thread_status([msg("1", "in", "a", "t"), msg("2", "out", "b", "t")]) == "replied"


async def test_first_conversation_is_auto_selected(inbox):
    await inbox.refresh_conversations()
    assert inbox.selected.id == "c1"
    await inbox.refresh_messages()
    assert [m.id for m in inbox.messages] == ["1", "2"]
    assert inbox.thread_status() == "replied"


async def test_refresh_keeps_existing_selection(inbox):
    inbox.select(Conversation(id="c2", customer_phone="+971500000002"))
    await inbox.refresh_conversations()
    assert inbox.selected.id == "c2"


async def test_stale_response_is_discarded(backend, inbox):
    await inbox.refresh_conversations()
    gate = backend.gates["list_messages"] = asyncio.Event()

    task = asyncio.create_task(inbox.refresh_messages())
    await asyncio.sleep(0)
    inbox.select(inbox.conversations[1])
    gate.set()

    assert await task is None
    assert inbox.messages == []


async def test_repeated_refresh_does_not_duplicate(inbox):
    await inbox.refresh_conversations()
    await inbox.refresh_messages()
    await inbox.refresh_messages()
    assert len(inbox.messages) == 2


async def test_local_echo_until_server_has_it(backend, inbox):
    await inbox.refresh_conversations()
    await inbox.refresh_messages()

    echo = inbox.add_local_echo("on its way")
    assert inbox.messages[-1] is echo
    assert inbox.thread_status() == "replied"

    await inbox.refresh_messages()
    assert echo in inbox.messages

    backend.messages["+971500000001"].append(msg("9", "out", "on its way", "2024-05-01T10:03:00Z"))
    await inbox.refresh_messages()
    assert echo not in inbox.messages
    assert [m.id for m in inbox.messages] == ["1", "2", "9"]


async def test_dropped_echo_does_not_come_back(inbox):
    await inbox.refresh_conversations()
    await inbox.refresh_messages()
    before = [m.id for m in inbox.messages]

    echo = inbox.add_local_echo("never delivered")
    inbox.drop_local_echo(echo)
    await inbox.refresh_messages()

    assert [m.id for m in inbox.messages] == before


async def test_polling_survives_failures_and_stops(backend, inbox):
    backend.fail["list_conversations"] = BackendError("flaky", status_code=500)
    stop = asyncio.Event()
    poller = asyncio.create_task(inbox.run_polling(interval=0.01, stop_event=stop, conversation_interval=0.01))

    await asyncio.sleep(0.05)
    assert len(backend.calls_to("list_conversations")) >= 2
    stop.set()
    await asyncio.wait_for(poller, timeout=1)


async def test_polling_stops_on_auth_failure(backend, inbox):
    backend.fail["list_conversations"] = AuthenticationError("expired", status_code=401)
    stop = asyncio.Event()
    with pytest.raises(AuthenticationError):
        await asyncio.wait_for(inbox.run_polling(interval=0.01, stop_event=stop, conversation_interval=0.01), timeout=1)
    assert stop.is_set()
