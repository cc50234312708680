# models.py - Domain records for orders, catalog products and inbox state
"""
Plain dataclasses for everything the engine reads from and writes to the
backend. Each record knows how to build itself from a backend payload
(`from_dict`) and how to serialize back (`to_dict`).
"""

import logging
from typing import Any, Dict, List, Optional
from datetime import datetime
from dataclasses import dataclass, field, replace
from enum import Enum

from utils import to_number, clean_text, parse_iso_datetime

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    """Order lifecycle states."""
    PENDING = "pending"
    SHIPPED = "shipped"
    PAID = "paid"
    CANCELLED = "cancelled"

    @classmethod
    def from_value(cls, value: Any) -> "OrderStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            logger.warning(f"Unknown order status '{value}', treating as pending")
            return cls.PENDING

    @property
    def is_live(self) -> bool:
        return self in (OrderStatus.PENDING, OrderStatus.SHIPPED)

    @property
    def is_frozen(self) -> bool:
        """Prices on shipped/paid orders are historical fact."""
        return self in (OrderStatus.SHIPPED, OrderStatus.PAID)


class InquiryKind(str, Enum):
    PRICE = "price"
    AVAILABILITY = "availability"
    MENU = "menu"
    OTHER = "other"

    @classmethod
    def from_value(cls, value: Any) -> Optional["InquiryKind"]:
        if value is None or value == "":
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class InquiryStatus(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"


@dataclass
class Product:
    """Catalog entry. Read-only to the engine."""
    canonical: str
    variant: Optional[str] = None
    brand: Optional[str] = None
    base_unit: Optional[str] = None
    price_per_unit: Optional[float] = None
    is_active: bool = True
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "Product":
        # Older catalog rows carry the family name under name/label
        canonical = ""
        for key in ("canonical", "name", "label"):
            candidate = clean_text(data.get(key))
            if candidate:
                canonical = candidate
                break
        is_active = data.get("is_active")
        return cls(
            canonical=canonical,
            variant=clean_text(data.get("variant")),
            brand=clean_text(data.get("brand")),
            base_unit=clean_text(data.get("base_unit")),
            price_per_unit=to_number(data.get("price_per_unit")),
            is_active=True if is_active is None else bool(is_active),
            id=clean_text(data.get("id")),
        )

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "canonical": self.canonical,
            "variant": self.variant,
            "brand": self.brand,
            "base_unit": self.base_unit,
            "price_per_unit": self.price_per_unit,
            "is_active": self.is_active,
        }


@dataclass
class OrderLine:
    """Single parsed line of an order."""
    canonical: str
    qty: Optional[float] = None
    unit: Optional[str] = None
    brand: Optional[str] = None
    variant: Optional[str] = None
    notes: Optional[str] = None
    price_per_unit: Optional[float] = None
    line_total: Optional[float] = None
    name: Optional[str] = None
    category: Optional[str] = None

    @property
    def label(self) -> str:
        """Name shown to operators and customers."""
        return (self.canonical or self.name or "item").strip()

    @property
    def pricing_qty(self) -> float:
        """Quantity used for pricing; unspecified counts as one."""
        return self.qty if self.qty is not None else 1.0

    def copy(self, **changes) -> "OrderLine":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict) -> "OrderLine":
        return cls(
            canonical=clean_text(data.get("canonical")) or clean_text(data.get("name")) or "",
            qty=to_number(data.get("qty")),
            unit=clean_text(data.get("unit")),
            brand=clean_text(data.get("brand")),
            variant=clean_text(data.get("variant")),
            notes=clean_text(data.get("notes")),
            price_per_unit=to_number(data.get("price_per_unit")),
            line_total=to_number(data.get("line_total")),
            name=clean_text(data.get("name")),
            category=clean_text(data.get("category")),
        )

    def to_dict(self) -> Dict:
        """Payload shape accepted by the order line write endpoint."""
        payload = {
            "qty": self.qty,
            "unit": self.unit,
            "canonical": clean_text(self.canonical),
            "brand": self.brand,
            "variant": self.variant,
            "notes": self.notes,
            "price_per_unit": self.price_per_unit,
            "line_total": self.line_total,
        }
        if self.name:
            payload["name"] = self.name
        return payload


@dataclass
class Order:
    """Order as held by the dashboard."""
    id: str
    created_at: str
    status: OrderStatus
    customer_phone: Optional[str]
    lines: List[OrderLine] = field(default_factory=list)
    order_total: Optional[float] = None
    customer_name: Optional[str] = None
    parse_reason: Optional[str] = None
    link_reason: Optional[str] = None
    raw_text: Optional[str] = None
    shipping_address: Optional[str] = None

    @property
    def created_dt(self) -> Optional[datetime]:
        return parse_iso_datetime(self.created_at)

    @classmethod
    def from_dict(cls, data: Dict) -> "Order":
        raw_lines = data.get("items")
        if raw_lines is None:
            raw_lines = data.get("lines") or []
        phone = data.get("customer_phone")
        if phone is None:
            phone = data.get("source_phone")
        return cls(
            id=str(data.get("id") or data.get("order_id") or ""),
            created_at=str(data.get("created_at") or ""),
            status=OrderStatus.from_value(data.get("status")),
            customer_phone=clean_text(phone),
            lines=[OrderLine.from_dict(item) for item in raw_lines if isinstance(item, dict)],
            order_total=to_number(data.get("order_total")),
            customer_name=clean_text(data.get("customer_name")),
            parse_reason=clean_text(data.get("parse_reason")),
            link_reason=clean_text(data.get("link_reason")),
            raw_text=clean_text(data.get("raw_text")),
            shipping_address=clean_text(data.get("shipping_address")),
        )

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "status": self.status.value,
            "customer_phone": self.customer_phone,
            "items": [line.to_dict() for line in self.lines],
            "order_total": self.order_total,
            "customer_name": self.customer_name,
            "parse_reason": self.parse_reason,
            "link_reason": self.link_reason,
            "raw_text": self.raw_text,
            "shipping_address": self.shipping_address,
        }


@dataclass
class Inquiry:
    """Last customer question waiting on (or answered by) the operator."""
    text: str
    kind: InquiryKind
    canonical: Optional[str] = None
    at: Optional[str] = None
    status: InquiryStatus = InquiryStatus.UNRESOLVED

    @property
    def is_unresolved(self) -> bool:
        return self.status == InquiryStatus.UNRESOLVED

    @classmethod
    def from_dict(cls, data: Dict) -> Optional["Inquiry"]:
        """Build from the flat last_inquiry_* fields the backend returns."""
        text = clean_text(data.get("last_inquiry_text"))
        if not text:
            return None
        status = clean_text(data.get("last_inquiry_status")) or InquiryStatus.UNRESOLVED.value
        return cls(
            text=text,
            kind=InquiryKind.from_value(data.get("last_inquiry_kind")) or InquiryKind.OTHER,
            canonical=clean_text(data.get("last_inquiry_canonical")),
            at=clean_text(data.get("last_inquiry_at")),
            status=InquiryStatus.RESOLVED if status.lower() == "resolved" else InquiryStatus.UNRESOLVED,
        )


@dataclass
class InteractionState:
    """Per org+customer auto-reply and inquiry state."""
    # None when the backend holds no per-customer value
    auto_reply_enabled: Optional[bool] = None
    last_inquiry: Optional[Inquiry] = None

    @classmethod
    def from_dict(cls, data: Dict, default_auto_reply: Optional[bool] = None) -> "InteractionState":
        enabled = data.get("enabled", data.get("auto_reply_enabled"))
        return cls(
            auto_reply_enabled=enabled if isinstance(enabled, bool) else default_auto_reply,
            last_inquiry=Inquiry.from_dict(data),
        )


@dataclass
class Conversation:
    id: str
    customer_phone: str
    customer_name: Optional[str] = None
    last_text: Optional[str] = None
    last_ts: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "Conversation":
        phone = clean_text(data.get("customer_phone")) or ""
        return cls(
            id=str(data.get("id") or phone),
            customer_phone=phone,
            customer_name=clean_text(data.get("customer_name")),
            last_text=clean_text(data.get("last_text")),
            last_ts=clean_text(data.get("last_ts")),
        )


@dataclass
class Message:
    """Chat message; direction is 'in' (customer) or 'out' (store)."""
    id: str
    direction: str
    text: str
    ts: str

    @property
    def dedupe_key(self) -> tuple:
        return (self.direction, self.text, self.ts)

    @classmethod
    def from_dict(cls, data: Dict) -> "Message":
        direction = data.get("direction")
        if direction not in ("in", "out"):
            direction = "out" if data.get("from") == "store" else "in"
        return cls(
            id=str(data.get("id") or ""),
            direction=direction,
            text=str(data.get("text") if data.get("text") is not None else data.get("body") or ""),
            ts=str(data.get("ts") or data.get("created_at") or ""),
        )


@dataclass
class OrgSettings:
    org_id: str
    auto_reply_enabled: bool = True
    ingest_mode: str = "local_bridge"
    name: Optional[str] = None

    @property
    def is_waba(self) -> bool:
        return self.ingest_mode == "waba"

    @classmethod
    def from_dict(cls, data: Dict) -> "OrgSettings":
        org = data.get("org") if isinstance(data.get("org"), dict) else data
        enabled = org.get("auto_reply_enabled")
        return cls(
            org_id=str(org.get("id") or org.get("org_id") or ""),
            # default ON when the backend does not say
            auto_reply_enabled=enabled if isinstance(enabled, bool) else True,
            ingest_mode=(org.get("ingest_mode") or "local_bridge").lower(),
            name=clean_text(org.get("name")),
        )
