import pytest

from conftest import make_order
from customer_sessions import group_by_customer, needs_help, normalize_phone, past_orders, session_for

PHONE = "+971501234567"


@pytest.fixture
def orders():
    return [
        make_order("p1", "2024-05-01T09:00:00Z", status="paid", phone=PHONE, customer_name="Sara"),
        make_order("s1", "2024-05-02T09:00:00Z", status="shipped", phone="971501234567"),
        make_order("n1", "2024-05-03T09:00:00Z", status="pending", phone="+971 50 123 4567"),
        make_order("c1", "2024-05-04T09:00:00Z", status="cancelled", phone=PHONE, raw_text="2 kg onion"),
        make_order("x1", "2024-05-05T09:00:00Z", status="pending", phone="+971509999999"),
    ]


def test_normalize_phone():
    assert normalize_phone("+971 (50) 123-4567") == "971501234567"
    assert normalize_phone(None) == ""


def test_session_splits_live_and_past(orders):
    view = session_for(PHONE, orders)
    assert [o.id for o in view.all] == ["c1", "n1", "s1", "p1"]
    assert [o.id for o in view.live] == ["n1", "s1"]
    assert [o.id for o in view.past] == ["c1", "p1"]
    assert view.active.id == "n1"
    assert view.needs_merge
    assert [o.id for o in view.pending] == ["n1"]


def test_pinned_order_wins_even_when_closed(orders):
    assert session_for(PHONE, orders, selected_order_id="p1").active.id == "p1"


def test_missing_pin_falls_back_to_newest_live(orders):
    assert session_for(PHONE, orders, selected_order_id="gone").active.id == "n1"


def test_no_live_orders_means_no_active_order(orders):
    closed_only = [o for o in orders if not o.status.is_live]
    view = session_for(PHONE, closed_only)
    assert view.active is None
    assert not view.needs_merge


def test_empty_phones_group_together():
    orders = [make_order("a", "2024-05-01T09:00:00Z", phone=None), make_order("b", "2024-05-02T09:00:00Z", phone="")]
    assert [o.id for o in session_for(None, orders).all] == ["b", "a"]


def test_group_by_customer(orders):
    groups = group_by_customer(orders)
    assert set(groups) == {"971501234567", "971509999999"}
    assert [o.id for o in groups["971501234567"]] == ["c1", "n1", "s1", "p1"]


def test_needs_help_hints():
    assert needs_help(make_order("a", "2024-05-01T09:00:00Z", parse_reason="inq:price;needs_help"))
    assert needs_help(make_order("a", "2024-05-01T09:00:00Z", link_reason="Manual_Review requested"))
    assert not needs_help(make_order("a", "2024-05-01T09:00:00Z", parse_reason="items_detected"))
    assert not needs_help(None)


def test_past_orders_filters(orders):
    assert [o.id for o in past_orders(orders)] == ["p1"]
    assert [o.id for o in past_orders(orders, "cancelled")] == ["c1"]
    assert [o.id for o in past_orders(orders, "all")] == ["c1", "p1"]
    assert [o.id for o in past_orders(orders, "all", search="onion")] == ["c1"]
    assert [o.id for o in past_orders(orders, "all", search="sara")] == ["p1"]
    with pytest.raises(ValueError):
        past_orders(orders, "shipped")
