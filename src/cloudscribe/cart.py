"""Client-held shopping cart persisted to a local JSON file.

The file is a cache, not the source of truth: a corrupt or missing file
simply yields an empty cart. Two processes editing the same file overwrite
each other (last write wins).
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from decimal import Decimal
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from cloudscribe.schema import CartItem

logger = logging.getLogger("cloudscribe.cart")

DEFAULT_CART_PATH = Path.home() / ".cloudscribe" / "cart.json"


class Cart:
    """Ordered collection of line items, written through to ``path`` on every change."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path is not None else None
        self._items: list[CartItem] = self._load()

    # -- queries ------------------------------------------------------------

    @property
    def items(self) -> list[CartItem]:
        return list(self._items)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self._items), Decimal("0"))

    def get(self, item_id: str) -> CartItem | None:
        return next((i for i in self._items if i.id == item_id), None)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    # -- mutations ----------------------------------------------------------

    def add_item(self, item: CartItem) -> CartItem:
        """Add ``item``, or bump the quantity if its id is already in the cart."""
        existing = self.get(item.id)
        if existing is None:
            self._items.append(item)
            logger.info("Added %s to cart", item.name)
            result = item
        else:
            result = existing.model_copy(update={"quantity": existing.quantity + item.quantity})
            self._replace(result)
            logger.info("%s quantity increased to %d", item.name, result.quantity)
        self._save()
        return result

    def remove_item(self, item_id: str) -> bool:
        before = len(self._items)
        self._items = [i for i in self._items if i.id != item_id]
        removed = len(self._items) != before
        if removed:
            logger.info("Removed %s from cart", item_id)
            self._save()
        return removed

    def update_quantity(self, item_id: str, quantity: int) -> CartItem | None:
        """Set an item's quantity. Anything below 1 removes the item."""
        if quantity < 1:
            self.remove_item(item_id)
            return None
        existing = self.get(item_id)
        if existing is None:
            return None
        updated = existing.model_copy(update={"quantity": quantity})
        self._replace(updated)
        self._save()
        return updated

    def clear(self) -> None:
        self._items = []
        logger.info("Cart cleared")
        self._save()

    def _replace(self, item: CartItem) -> None:
        self._items = [item if i.id == item.id else i for i in self._items]

    # -- persistence --------------------------------------------------------

    def _load(self) -> list[CartItem]:
        if self.path is None or not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return [CartItem.model_validate(entry) for entry in raw]
        except (OSError, json.JSONDecodeError, TypeError, PydanticValidationError):
            logger.error("Failed to parse cart from %s, starting empty", self.path)
            return []

    def _save(self) -> None:
        """Atomically rewrite the cart file (write-to-temp + os.replace)."""
        if self.path is None:
            return
        data = [item.model_dump(mode="json") for item in self._items]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f)
                os.replace(tmp_path, self.path)
            except OSError:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
                raise
        except OSError:
            logger.warning("Could not persist cart to %s", self.path, exc_info=True)
