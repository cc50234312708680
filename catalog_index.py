# catalog_index.py - Catalog snapshot and order-line product matching
"""
Resolves a parsed order line (canonical name + optional variant) to a
catalog product so the engine can recover an authoritative unit price.

Matching tiers, first hit wins:
1. exact normalized canonical name
2. substring containment in either direction ("onion" vs "onion small")
3. among several candidates, an exact normalized variant narrows the set
4. first surviving candidate

A miss is a normal outcome and returns None; nothing here raises on bad
input.
"""

import re
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from models import Product

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"^(n/?a|none|unknown|unspecified)$", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def is_blank(value: Any) -> bool:
    """True for None, empty strings and parser placeholders like 'NA' or 'unknown'."""
    if value is None:
        return True
    text = str(value).strip()
    return not text or bool(_PLACEHOLDER_RE.match(text))


def normalize_key(value: Any) -> str:
    """Trim, lowercase and collapse whitespace. Blank values become ''."""
    if is_blank(value):
        return ""
    return _WHITESPACE_RE.sub(" ", str(value).strip().lower())


def match(canonical: Optional[str], variant: Optional[str], catalog: Iterable[Product]) -> Optional[Product]:
    """Best-effort lookup of the catalog product for an order line. Inactive products never match."""
    canon_key = normalize_key(canonical)
    if not canon_key:
        return None
    var_key = normalize_key(variant)

    products = [p for p in catalog or [] if p.is_active]
    candidates = [p for p in products if normalize_key(p.canonical) == canon_key]

    if not candidates:
        candidates = [
            p for p in products
            if normalize_key(p.canonical)
            and (canon_key in normalize_key(p.canonical) or normalize_key(p.canonical) in canon_key)
        ]

    if not candidates:
        return None

    if len(candidates) > 1 and var_key:
        narrowed = [p for p in candidates if normalize_key(p.variant) == var_key]
        if narrowed:
            candidates = narrowed

    return candidates[0]


class CatalogIndex:
    """
    In-memory snapshot of a merchant's active products.

    The snapshot is injected into the pricing and lifecycle code and is only
    reloaded when refresh() is called, so matches run against whatever was
    fetched last.
    """

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._products: List[Product] = []
        self._by_canonical: Dict[str, List[Product]] = {}
        self.loaded_at: Optional[datetime] = None
        if products is not None:
            self.load(products)

    def load(self, products: Iterable[Product]) -> None:
        """Replace the snapshot. Inactive products are dropped."""
        active = [p for p in products if p.is_active]
        by_canonical: Dict[str, List[Product]] = {}
        for product in active:
            key = normalize_key(product.canonical)
            if key:
                by_canonical.setdefault(key, []).append(product)
        self._products = active
        self._by_canonical = by_canonical
        self.loaded_at = datetime.now(timezone.utc)
        logger.info(f"Catalog snapshot loaded: {len(active)} active products")

    async def refresh(self, loader: Callable[[], Awaitable[Iterable[Product]]]) -> None:
        """
        Reload the snapshot from the backend.
        On failure the previous snapshot is kept and the error propagates.
        """
        try:
            products = await loader()
        except Exception as e:
            logger.error(f"Catalog refresh failed, keeping {len(self._products)} cached products: {e}")
            raise
        self.load(products)

    @property
    def products(self) -> List[Product]:
        return list(self._products)

    def __len__(self) -> int:
        return len(self._products)

    def __iter__(self):
        return iter(self._products)

    def match(self, canonical: Optional[str], variant: Optional[str] = None) -> Optional[Product]:
        """Indexed version of match(); same tiers, same result."""
        canon_key = normalize_key(canonical)
        if not canon_key or not self._products:
            return None
        exact = self._by_canonical.get(canon_key)
        if exact:
            var_key = normalize_key(variant)
            if len(exact) > 1 and var_key:
                narrowed = [p for p in exact if normalize_key(p.variant) == var_key]
                if narrowed:
                    return narrowed[0]
            return exact[0]
        # No exact hit: containment scan over the full list
        return match(canonical, variant, self._products)
