"""Item ledger Protocol — the trade engine's view of player inventories.

Every call is atomic for a single player: a bundle either applies in full
or not at all. There is no cross-player primitive; the trade engine
sequences calls and compensates on failure.

Unit tests inject a fake or mock conforming to this Protocol.
"""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.el_common.bundle import ItemBundle
from src.el_common.enums import InventorySide
from src.el_inventory.domain.models import InventoryStack


class ItemLedgerProtocol(Protocol):
    async def available_quantity(
        self, db: AsyncSession, user_id: str, item_id: str
    ) -> int: ...

    async def reserve(
        self,
        db: AsyncSession,
        user_id: str,
        bundle: ItemBundle,
        ref_id: str,
        side: InventorySide = InventorySide.OFFERING,
    ) -> None:
        """Move quantities from spendable to reserved. Raises InsufficientItemsError."""
        ...

    async def release(
        self, db: AsyncSession, user_id: str, bundle: ItemBundle, ref_id: str
    ) -> None:
        """Move quantities from reserved back to spendable."""
        ...

    async def settle_reserved(
        self, db: AsyncSession, user_id: str, bundle: ItemBundle, ref_id: str
    ) -> None:
        """Consume reserved quantities (reservation becomes a debit)."""
        ...

    async def restore_reserved(
        self, db: AsyncSession, user_id: str, bundle: ItemBundle, ref_id: str
    ) -> None:
        """Inverse of settle_reserved; used only to compensate a failed settlement."""
        ...

    async def debit(
        self,
        db: AsyncSession,
        user_id: str,
        bundle: ItemBundle,
        ref_id: str,
        side: InventorySide = InventorySide.REQUESTING,
    ) -> None:
        """Remove spendable quantities. Raises InsufficientItemsError."""
        ...

    async def credit(
        self, db: AsyncSession, user_id: str, bundle: ItemBundle, ref_id: str
    ) -> None: ...

    async def list_stacks(
        self, db: AsyncSession, user_id: str
    ) -> list[InventoryStack]: ...
