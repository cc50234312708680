# api_client.py - Async client for the order dashboard backend
"""
Typed wrapper over the dashboard's REST backend.

Handles:
- Bearer token auth on every request
- Retry with exponential backoff on HTTP 429/503 and network errors
- Conversion of every other failure into BackendError
- Tolerant parsing of list endpoints that answer either a bare list or a
  wrapped {"data": [...]} / {"items": [...]} object
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

import config
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

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = (429, 503)
PRODUCT_PAGE_SIZE = 200


class BackendError(Exception):
    """A backend call failed; status_code is None for network failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class AuthenticationError(BackendError):
    """401/403 from the backend. The session token is no longer valid."""


# =====================================
# Request payloads
# =====================================

class OrderLinesUpdate(BaseModel):
    items: List[Dict[str, Any]]
    reason: str


class StatusUpdate(BaseModel):
    status: str


class CustomerAutoReplyUpdate(BaseModel):
    org_id: str
    phone: str
    enabled: bool


class OrgAutoReplyUpdate(BaseModel):
    org_id: str
    enabled: bool


class InquiryResolution(BaseModel):
    org_id: str
    phone: str
    inquiry_at: Optional[str] = None
    canonical: Optional[str] = None


class OutboundMessage(BaseModel):
    org_id: str
    phone: str
    text: str


@dataclass
class ProductPage:
    items: List[Product] = field(default_factory=list)
    total: int = 0


def _unwrap_list(data: Any, *keys: str) -> List[Dict]:
    """Accept a bare list or the first list found under one of `keys`."""
    if isinstance(data, list):
        return [d for d in data if isinstance(d, dict)]
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, list):
                return [d for d in value if isinstance(d, dict)]
    return []


class BackendClient:
    """
    Backend RPC surface used by the engine.
    One instance per dashboard session; close() when done.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.token = token if token is not None else config.API_TOKEN
        self.max_attempts = max(1, max_attempts or config.API_MAX_ATTEMPTS)
        self.backoff_seconds = config.API_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or config.API_TIMEOUT_SECONDS,
            transport=transport,
        )
        logger.info(f"BackendClient initialized for {self.base_url}")

    def set_token(self, token: Optional[str]) -> None:
        self.token = token

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[BaseModel] = None,
    ) -> Any:
        """
        Make a backend request with retry logic.

        Retries:
        - Up to max_attempts
        - Exponential backoff: backoff, 2*backoff, ...
        - Retries on HTTP 429/503 and network errors
        - No retry on other HTTP errors

        Raises:
            AuthenticationError: On 401/403
            BackendError: On any other failure after retries are exhausted
        """
        body = payload.model_dump() if payload is not None else None
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}

        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.debug(f"API Request: {method} {path} params={clean_params} data={body}")
                resp = await self.client.request(
                    method, path, params=clean_params or None, json=body, headers=self._headers()
                )
                resp.raise_for_status()
                if resp.status_code == 204 or not resp.content:
                    return None
                try:
                    return resp.json()
                except ValueError:
                    logger.warning(f"API response for {method} {path} not JSON. Status: {resp.status_code}")
                    return {"status": "success", "content": resp.text}
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                try:
                    detail = e.response.json().get("detail", e.response.text)
                except (ValueError, AttributeError):
                    detail = e.response.text
                if status in TRANSIENT_STATUS_CODES and attempt < self.max_attempts:
                    wait_s = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        f"Transient backend error {status} on {method} {path}; "
                        f"retrying in {wait_s}s (attempt {attempt}/{self.max_attempts})"
                    )
                    await asyncio.sleep(wait_s)
                    continue
                logger.error(f"HTTP Error {status} for {method} {path}: {detail}")
                if status in (401, 403):
                    raise AuthenticationError(
                        f"Authentication error ({status}): {detail}", status_code=status, detail=detail
                    ) from e
                raise BackendError(f"API error ({status}): {detail}", status_code=status, detail=detail) from e
            except httpx.HTTPError as e:
                if attempt < self.max_attempts:
                    wait_s = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        f"Network error on {method} {path}; retrying in {wait_s}s "
                        f"(attempt {attempt}/{self.max_attempts}): {e}"
                    )
                    await asyncio.sleep(wait_s)
                    continue
                logger.error(f"Network error (final) on {method} {path}: {e}")
                raise BackendError(f"Cannot reach backend at {self.base_url}: {e}") from e

        raise BackendError(f"{method} {path} failed after {self.max_attempts} attempts")

    # --------------------------------------------------
    # Org
    # --------------------------------------------------

    async def me(self) -> OrgSettings:
        data = await self._request("GET", "/api/org/me")
        return OrgSettings.from_dict(data or {})

    async def set_org_auto_reply(self, org_id: str, enabled: bool) -> OrgSettings:
        data = await self._request(
            "POST", "/api/org/auto-reply", payload=OrgAutoReplyUpdate(org_id=org_id, enabled=enabled)
        )
        settings = OrgSettings.from_dict(data if isinstance(data, dict) else {})
        if not settings.org_id:
            settings.org_id = org_id
        if not (isinstance(data, dict) and isinstance(data.get("auto_reply_enabled"), bool)):
            settings.auto_reply_enabled = enabled
        return settings

    # --------------------------------------------------
    # Orders
    # --------------------------------------------------

    async def list_orders(self) -> List[Order]:
        data = await self._request("GET", "/api/orders")
        return [Order.from_dict(o) for o in _unwrap_list(data, "data", "orders")]

    async def set_order_lines(self, order_id: str, lines: List[OrderLine], reason: str) -> Optional[Order]:
        """Overwrite an order's lines. Used for manual edits and price freezing."""
        data = await self._request(
            "POST",
            f"/api/orders/{order_id}/ai-fix",
            payload=OrderLinesUpdate(items=[line.to_dict() for line in lines], reason=reason),
        )
        if isinstance(data, dict) and (data.get("id") or data.get("order_id")):
            return Order.from_dict(data)
        return None

    async def set_order_status(self, order_id: str, status: OrderStatus) -> None:
        await self._request(
            "POST", f"/api/orders/{order_id}/status", payload=StatusUpdate(status=OrderStatus(status).value)
        )

    async def merge_order(self, order_id: str) -> None:
        """Merge the order into the previous open order of the same customer."""
        await self._request("POST", f"/api/orders/{order_id}/merge-previous")

    # --------------------------------------------------
    # Catalog
    # --------------------------------------------------

    async def list_products(self, filters: Optional[Dict[str, Any]] = None) -> ProductPage:
        data = await self._request("GET", "/api/products", params=filters)
        items = [Product.from_dict(p) for p in _unwrap_list(data, "items", "data")]
        total = data.get("total") if isinstance(data, dict) else None
        return ProductPage(items=items, total=int(total) if isinstance(total, (int, float)) else len(items))

    async def list_all_products(self, search: Optional[str] = None) -> List[Product]:
        """Page through the catalog until `total` products are fetched."""
        products: List[Product] = []
        offset = 0
        while True:
            page = await self.list_products({"limit": PRODUCT_PAGE_SIZE, "offset": offset, "search": search})
            products.extend(page.items)
            offset += len(page.items)
            if not page.items or offset >= page.total:
                break
        return products

    # --------------------------------------------------
    # Inbox
    # --------------------------------------------------

    async def get_customer_auto_reply(self, org_id: str, phone: str) -> InteractionState:
        data = await self._request("GET", "/api/inbox/auto_reply", params={"org_id": org_id, "phone": phone})
        return InteractionState.from_dict(data if isinstance(data, dict) else {})

    async def set_customer_auto_reply(self, org_id: str, phone: str, enabled: bool) -> None:
        await self._request(
            "POST",
            "/api/inbox/auto_reply",
            payload=CustomerAutoReplyUpdate(org_id=org_id, phone=phone, enabled=enabled),
        )

    async def resolve_inquiry(
        self, org_id: str, phone: str, inquiry_at: Optional[str], canonical: Optional[str]
    ) -> None:
        await self._request(
            "POST",
            "/api/inbox/inquiry/resolve",
            payload=InquiryResolution(org_id=org_id, phone=phone, inquiry_at=inquiry_at, canonical=canonical),
        )

    async def send_message(self, org_id: str, phone: str, text: str) -> None:
        phone_plain = str(phone or "").strip().lstrip("+")
        await self._request(
            "POST", "/api/inbox/send", payload=OutboundMessage(org_id=org_id, phone=phone_plain, text=text)
        )

    async def list_conversations(self, org_id: str) -> List[Conversation]:
        data = await self._request("GET", "/api/inbox/conversations", params={"org_id": org_id})
        return [Conversation.from_dict(c) for c in _unwrap_list(data, "conversations", "data")]

    async def list_messages(self, org_id: str, phone: str) -> List[Message]:
        data = await self._request("GET", "/api/inbox/messages", params={"org_id": org_id, "phone": phone})
        return [Message.from_dict(m) for m in _unwrap_list(data, "messages", "data")]

    async def close(self):
        """Close HTTP client connection."""
        await self.client.aclose()
        logger.info("BackendClient closed")
