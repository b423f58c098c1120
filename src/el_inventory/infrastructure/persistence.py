"""InventoryRepository — PostgreSQL implementation of ItemLedgerProtocol.

Every per-item leg is a single atomic UPDATE ... RETURNING whose WHERE clause
carries the business constraint (enough spendable / reserved units).
A result of 0 rows means the constraint was violated.

A bundle runs inside a SAVEPOINT (`db.begin_nested()`), so a failing leg
undoes the legs before it while leaving the caller's transaction usable.

Transaction ownership: the CALLER (application service) commits or rolls back.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.el_common.bundle import ItemBundle, TradeItem
from src.el_common.enums import InventorySide, MovementType
from src.el_common.errors import InsufficientItemsError, InternalError
from src.el_inventory.domain.models import InventoryStack

_REFERENCE_TYPE = "TRADE_OFFER"

_STACK_COLUMNS = "user_id, item_id, quantity, reserved_quantity, updated_at"

# ---------------------------------------------------------------------------
# SQL: inventory_items
# ---------------------------------------------------------------------------

_GET_STACK_SQL = text(f"""
    SELECT {_STACK_COLUMNS}
    FROM inventory_items
    WHERE user_id = :user_id AND item_id = :item_id
""")

_RESERVE_SQL = text(f"""
    UPDATE inventory_items
    SET reserved_quantity = reserved_quantity + :quantity,
        updated_at = NOW()
    WHERE user_id = :user_id
      AND item_id = :item_id
      AND (quantity - reserved_quantity) >= :quantity
    RETURNING {_STACK_COLUMNS}
""")

_RELEASE_SQL = text(f"""
    UPDATE inventory_items
    SET reserved_quantity = reserved_quantity - :quantity,
        updated_at = NOW()
    WHERE user_id = :user_id
      AND item_id = :item_id
      AND reserved_quantity >= :quantity
    RETURNING {_STACK_COLUMNS}
""")

_SETTLE_RESERVED_SQL = text(f"""
    UPDATE inventory_items
    SET quantity = quantity - :quantity,
        reserved_quantity = reserved_quantity - :quantity,
        updated_at = NOW()
    WHERE user_id = :user_id
      AND item_id = :item_id
      AND reserved_quantity >= :quantity
    RETURNING {_STACK_COLUMNS}
""")

_RESTORE_RESERVED_SQL = text(f"""
    INSERT INTO inventory_items (user_id, item_id, quantity, reserved_quantity)
    VALUES (:user_id, :item_id, :quantity, :quantity)
    ON CONFLICT (user_id, item_id) DO UPDATE
        SET quantity = inventory_items.quantity + EXCLUDED.quantity,
            reserved_quantity = inventory_items.reserved_quantity + EXCLUDED.quantity,
            updated_at = NOW()
    RETURNING {_STACK_COLUMNS}
""")

_DEBIT_SQL = text(f"""
    UPDATE inventory_items
    SET quantity = quantity - :quantity,
        updated_at = NOW()
    WHERE user_id = :user_id
      AND item_id = :item_id
      AND (quantity - reserved_quantity) >= :quantity
    RETURNING {_STACK_COLUMNS}
""")

_CREDIT_SQL = text(f"""
    INSERT INTO inventory_items (user_id, item_id, quantity, reserved_quantity)
    VALUES (:user_id, :item_id, :quantity, 0)
    ON CONFLICT (user_id, item_id) DO UPDATE
        SET quantity = inventory_items.quantity + EXCLUDED.quantity,
            updated_at = NOW()
    RETURNING {_STACK_COLUMNS}
""")

_LIST_STACKS_SQL = text(f"""
    SELECT {_STACK_COLUMNS}
    FROM inventory_items
    WHERE user_id = :user_id AND quantity > 0
    ORDER BY item_id ASC
""")

# ---------------------------------------------------------------------------
# SQL: inventory_movements (append-only)
# ---------------------------------------------------------------------------

_INSERT_MOVEMENT_SQL = text("""
    INSERT INTO inventory_movements
        (user_id, item_id, movement_type, quantity, reference_type, reference_id)
    VALUES
        (:user_id, :item_id, :movement_type, :quantity, :reference_type, :reference_id)
""")


def _row_to_stack(row: object) -> InventoryStack:
    return InventoryStack(
        user_id=row.user_id,  # type: ignore[attr-defined]
        item_id=row.item_id,  # type: ignore[attr-defined]
        quantity=row.quantity,  # type: ignore[attr-defined]
        reserved_quantity=row.reserved_quantity,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class InventoryRepository:
    """Concrete item ledger — all legs atomic at the SQL level."""

    async def available_quantity(
        self, db: AsyncSession, user_id: str, item_id: str
    ) -> int:
        result = await db.execute(_GET_STACK_SQL, {"user_id": user_id, "item_id": item_id})
        row = result.fetchone()
        return _row_to_stack(row).available if row else 0

    async def reserve(
        self,
        db: AsyncSession,
        user_id: str,
        bundle: ItemBundle,
        ref_id: str,
        side: InventorySide = InventorySide.OFFERING,
    ) -> None:
        async with db.begin_nested():
            for item in bundle:
                row = await self._apply(db, _RESERVE_SQL, user_id, item)
                if row is None:
                    await self._raise_insufficient(db, user_id, item, side)
                await self._record(db, user_id, item.item_id, MovementType.RESERVE, 0, ref_id)

    async def release(
        self, db: AsyncSession, user_id: str, bundle: ItemBundle, ref_id: str
    ) -> None:
        async with db.begin_nested():
            for item in bundle:
                row = await self._apply(db, _RELEASE_SQL, user_id, item)
                if row is None:
                    raise InternalError(
                        f"Cannot release {item.quantity} {item.item_id} for {user_id}: "
                        "reservation missing"
                    )
                await self._record(db, user_id, item.item_id, MovementType.RELEASE, 0, ref_id)

    async def settle_reserved(
        self, db: AsyncSession, user_id: str, bundle: ItemBundle, ref_id: str
    ) -> None:
        async with db.begin_nested():
            for item in bundle:
                row = await self._apply(db, _SETTLE_RESERVED_SQL, user_id, item)
                if row is None:
                    raise InternalError(
                        f"Cannot settle {item.quantity} {item.item_id} for {user_id}: "
                        "reservation missing"
                    )
                await self._record(
                    db, user_id, item.item_id, MovementType.SETTLE_RESERVED, -item.quantity, ref_id
                )

    async def restore_reserved(
        self, db: AsyncSession, user_id: str, bundle: ItemBundle, ref_id: str
    ) -> None:
        async with db.begin_nested():
            for item in bundle:
                await self._apply(db, _RESTORE_RESERVED_SQL, user_id, item)
                await self._record(
                    db, user_id, item.item_id, MovementType.RESTORE_RESERVED, item.quantity, ref_id
                )

    async def debit(
        self,
        db: AsyncSession,
        user_id: str,
        bundle: ItemBundle,
        ref_id: str,
        side: InventorySide = InventorySide.REQUESTING,
    ) -> None:
        async with db.begin_nested():
            for item in bundle:
                row = await self._apply(db, _DEBIT_SQL, user_id, item)
                if row is None:
                    await self._raise_insufficient(db, user_id, item, side)
                await self._record(
                    db, user_id, item.item_id, MovementType.DEBIT, -item.quantity, ref_id
                )

    async def credit(
        self, db: AsyncSession, user_id: str, bundle: ItemBundle, ref_id: str
    ) -> None:
        async with db.begin_nested():
            for item in bundle:
                row = await self._apply(db, _CREDIT_SQL, user_id, item)
                if row is None:
                    raise InternalError(f"Credit of {item.item_id} for {user_id} returned no row")
                await self._record(
                    db, user_id, item.item_id, MovementType.CREDIT, item.quantity, ref_id
                )

    async def list_stacks(self, db: AsyncSession, user_id: str) -> list[InventoryStack]:
        result = await db.execute(_LIST_STACKS_SQL, {"user_id": user_id})
        return [_row_to_stack(row) for row in result.fetchall()]

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _apply(
        self, db: AsyncSession, stmt: object, user_id: str, item: TradeItem
    ) -> object | None:
        result = await db.execute(
            stmt,  # type: ignore[arg-type]
            {"user_id": user_id, "item_id": item.item_id, "quantity": item.quantity},
        )
        return result.fetchone()

    async def _raise_insufficient(
        self, db: AsyncSession, user_id: str, item: TradeItem, side: InventorySide
    ) -> None:
        available = await self.available_quantity(db, user_id, item.item_id)
        raise InsufficientItemsError(side, item.item_id, item.quantity, available)

    async def _record(
        self,
        db: AsyncSession,
        user_id: str,
        item_id: str,
        movement_type: MovementType,
        quantity: int,
        ref_id: str,
    ) -> None:
        await db.execute(
            _INSERT_MOVEMENT_SQL,
            {
                "user_id": user_id,
                "item_id": item_id,
                "movement_type": movement_type.value,
                "quantity": quantity,
                "reference_type": _REFERENCE_TYPE,
                "reference_id": ref_id,
            },
        )
