"""Item bundle value types shared by the inventory ledger and the trade engine.

A bundle is validated once, at construction; code that receives an
ItemBundle can rely on it being non-empty with unique item ids and positive
integer quantities.

Storage / wire shape (JSONB column, request bodies):
    [{"item_id": "wood", "quantity": 10}, ...]
"""

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from src.el_common.errors import InvalidBundleError


@dataclass(frozen=True)
class TradeItem:
    """(item_id, quantity) pair. Equality and hash are by item_id only."""

    item_id: str
    quantity: int = field(compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.item_id, str) or not self.item_id.strip():
            raise InvalidBundleError("item_id must be a non-empty string")
        # bool is an int subclass; reject it explicitly
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidBundleError(f"quantity for {self.item_id} must be an integer")
        if self.quantity <= 0:
            raise InvalidBundleError(
                f"quantity for {self.item_id} must be positive, got {self.quantity}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {"item_id": self.item_id, "quantity": self.quantity}


class ItemBundle:
    """Immutable, non-empty list of TradeItems with unique item ids."""

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[TradeItem]) -> None:
        items = tuple(items)
        if not items:
            raise InvalidBundleError("bundle must contain at least one item")
        seen: set[str] = set()
        for item in items:
            if not isinstance(item, TradeItem):
                raise InvalidBundleError(f"unexpected bundle entry {item!r}")
            if item.item_id in seen:
                raise InvalidBundleError(f"duplicate item_id {item.item_id}")
            seen.add(item.item_id)
        self._items: tuple[TradeItem, ...] = items

    @classmethod
    def of(cls, **quantities: int) -> "ItemBundle":
        """ItemBundle.of(wood=10, water_bottle=2)"""
        return cls(TradeItem(item_id, qty) for item_id, qty in quantities.items())

    @classmethod
    def from_json(cls, raw: Any) -> "ItemBundle":
        """Build from the storage shape. Accepts a list of dicts or a JSON string."""
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise InvalidBundleError(f"malformed bundle JSON: {exc}") from None
        if not isinstance(raw, list):
            raise InvalidBundleError("bundle must be a list")
        items: list[TradeItem] = []
        for entry in raw:
            if not isinstance(entry, dict):
                raise InvalidBundleError(f"unexpected bundle entry {entry!r}")
            items.append(TradeItem(entry.get("item_id"), entry.get("quantity")))  # type: ignore[arg-type]
        return cls(items)

    def to_json(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self._items]

    @property
    def item_ids(self) -> frozenset[str]:
        return frozenset(item.item_id for item in self._items)

    def quantity_of(self, item_id: str) -> int:
        for item in self._items:
            if item.item_id == item_id:
                return item.quantity
        return 0

    def is_disjoint(self, other: "ItemBundle") -> bool:
        return self.item_ids.isdisjoint(other.item_ids)

    def __iter__(self) -> Iterator[TradeItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ItemBundle):
            return NotImplemented
        return {i.item_id: i.quantity for i in self._items} == {
            i.item_id: i.quantity for i in other._items
        }

    def __hash__(self) -> int:
        return hash(frozenset((i.item_id, i.quantity) for i in self._items))

    def __repr__(self) -> str:
        inner = ", ".join(f"{i.item_id}:{i.quantity}" for i in self._items)
        return f"ItemBundle({inner})"
