"""InventoryApplicationService — read-only view of a player's item stacks.

Writes to inventory_items only happen through the trade engine, inside the
trade service's transaction.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from src.el_inventory.application.schemas import InventoryResponse, InventoryStackItem
from src.el_inventory.domain.repository import ItemLedgerProtocol
from src.el_inventory.infrastructure.persistence import InventoryRepository


class InventoryApplicationService:
    def __init__(self, repo: ItemLedgerProtocol | None = None) -> None:
        self._repo: ItemLedgerProtocol = repo or InventoryRepository()

    async def list_inventory(self, db: AsyncSession, user_id: str) -> InventoryResponse:
        stacks = await self._repo.list_stacks(db, user_id)
        return InventoryResponse(
            user_id=user_id,
            items=[InventoryStackItem.from_domain(s) for s in stacks],
        )
