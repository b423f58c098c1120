"""Domain models for el_inventory — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class InventoryStack:
    user_id: str
    item_id: str
    quantity: int            # owned, including reserved units
    reserved_quantity: int   # locked by active trade offers
    updated_at: datetime | None = None

    @property
    def available(self) -> int:
        return self.quantity - self.reserved_quantity

