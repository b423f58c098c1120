"""Pydantic schemas for el_inventory API."""

from pydantic import BaseModel

from src.el_inventory.domain.models import InventoryStack


class InventoryStackItem(BaseModel):
    item_id: str
    quantity: int
    reserved_quantity: int
    available_quantity: int
    updated_at: str | None  # ISO8601 string

    @classmethod
    def from_domain(cls, stack: InventoryStack) -> "InventoryStackItem":
        return cls(
            item_id=stack.item_id,
            quantity=stack.quantity,
            reserved_quantity=stack.reserved_quantity,
            available_quantity=stack.available,
            updated_at=stack.updated_at.isoformat() if stack.updated_at else None,
        )


class InventoryResponse(BaseModel):
    user_id: str
    items: list[InventoryStackItem]
