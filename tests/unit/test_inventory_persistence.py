# tests/unit/test_inventory_persistence.py
"""Unit tests for InventoryRepository using MagicMock AsyncSession."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.el_common.bundle import ItemBundle
from src.el_common.enums import InventorySide, MovementType
from src.el_common.errors import InsufficientItemsError, InternalError
from src.el_inventory.infrastructure.persistence import InventoryRepository


def _make_stack_row(item_id: str = "wood", quantity: int = 10, reserved: int = 0):
    row = MagicMock()
    row.user_id = "alice"
    row.item_id = item_id
    row.quantity = quantity
    row.reserved_quantity = reserved
    row.updated_at = None
    return row


def _result(row=None, rows=None):
    result = MagicMock()
    result.fetchone.return_value = row
    result.fetchall.return_value = rows or []
    return result


@pytest.fixture
def db():
    session = MagicMock()
    session.begin_nested.return_value.__aenter__ = AsyncMock(return_value=None)
    session.begin_nested.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


def _movement_params(db) -> list[dict]:
    return [
        c.args[1] for c in db.execute.call_args_list if "movement_type" in c.args[1]
    ]


class TestAvailableQuantity:
    async def test_missing_stack_is_zero(self, db):
        db.execute = AsyncMock(return_value=_result(None))

        assert await InventoryRepository().available_quantity(db, "alice", "wood") == 0

    async def test_excludes_reserved_units(self, db):
        db.execute = AsyncMock(return_value=_result(_make_stack_row(quantity=25, reserved=10)))

        assert await InventoryRepository().available_quantity(db, "alice", "wood") == 15


class TestReserve:
    async def test_each_item_reserved_and_recorded(self, db):
        bundle = ItemBundle.of(wood=10, stone=2)
        db.execute = AsyncMock(
            side_effect=[
                _result(_make_stack_row("wood", 25, 10)), _result(),
                _result(_make_stack_row("stone", 5, 2)), _result(),
            ]
        )

        await InventoryRepository().reserve(db, "alice", bundle, "101")

        db.begin_nested.assert_called_once()
        movements = _movement_params(db)
        assert [m["movement_type"] for m in movements] == [MovementType.RESERVE.value] * 2
        assert all(m["quantity"] == 0 for m in movements)
        assert {m["reference_id"] for m in movements} == {"101"}

    async def test_shortage_reports_available_and_side(self, db):
        db.execute = AsyncMock(
            side_effect=[_result(None), _result(_make_stack_row(quantity=7, reserved=4))]
        )

        with pytest.raises(InsufficientItemsError) as exc_info:
            await InventoryRepository().reserve(db, "alice", ItemBundle.of(wood=10), "101")

        err = exc_info.value
        assert err.side == InventorySide.OFFERING
        assert (err.item_id, err.required, err.available) == ("wood", 10, 3)
        assert _movement_params(db) == []


class TestDebitCredit:
    async def test_debit_records_negative_movement(self, db):
        db.execute = AsyncMock(side_effect=[_result(_make_stack_row()), _result()])

        await InventoryRepository().debit(db, "bob", ItemBundle.of(water_bottle=2), "101")

        (movement,) = _movement_params(db)
        assert movement["movement_type"] == MovementType.DEBIT.value
        assert movement["quantity"] == -2
        assert movement["user_id"] == "bob"

    async def test_debit_shortage_defaults_to_requesting_side(self, db):
        db.execute = AsyncMock(side_effect=[_result(None), _result(None)])

        with pytest.raises(InsufficientItemsError) as exc_info:
            await InventoryRepository().debit(db, "bob", ItemBundle.of(water_bottle=2), "101")

        assert exc_info.value.side == InventorySide.REQUESTING
        assert exc_info.value.available == 0

    async def test_credit_records_positive_movement(self, db):
        db.execute = AsyncMock(side_effect=[_result(_make_stack_row()), _result()])

        await InventoryRepository().credit(db, "bob", ItemBundle.of(wood=10), "101")

        (movement,) = _movement_params(db)
        assert movement["movement_type"] == MovementType.CREDIT.value
        assert movement["quantity"] == 10


class TestReservedLegs:
    async def test_release_without_reservation_is_internal_error(self, db):
        db.execute = AsyncMock(return_value=_result(None))

        with pytest.raises(InternalError):
            await InventoryRepository().release(db, "alice", ItemBundle.of(wood=10), "101")

    async def test_settle_reserved_burns_owned_units(self, db):
        db.execute = AsyncMock(side_effect=[_result(_make_stack_row()), _result()])

        await InventoryRepository().settle_reserved(db, "alice", ItemBundle.of(wood=10), "101")

        (movement,) = _movement_params(db)
        assert movement["movement_type"] == MovementType.SETTLE_RESERVED.value
        assert movement["quantity"] == -10

    async def test_restore_reserved_records_restore(self, db):
        db.execute = AsyncMock(side_effect=[_result(_make_stack_row()), _result()])

        await InventoryRepository().restore_reserved(db, "alice", ItemBundle.of(wood=10), "101")

        (movement,) = _movement_params(db)
        assert movement["movement_type"] == MovementType.RESTORE_RESERVED.value
        assert movement["quantity"] == 10


class TestListStacks:
    async def test_maps_rows(self, db):
        rows = [_make_stack_row("stone", 3, 0), _make_stack_row("wood", 25, 10)]
        db.execute = AsyncMock(return_value=_result(rows=rows))

        stacks = await InventoryRepository().list_stacks(db, "alice")

        assert [s.item_id for s in stacks] == ["stone", "wood"]
        assert stacks[1].available == 15
