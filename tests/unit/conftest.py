"""Unit test fixtures: in-memory item ledger, offer store and history store.

They keep the storage contracts the engine relies on: bundle operations are
all-or-nothing per call, and status transitions are compare-and-swap.
Every call yields to the event loop first so that asyncio.gather actually
interleaves concurrent operations.
"""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from itertools import count
from unittest.mock import MagicMock

import pytest

from src.el_common.bundle import ItemBundle
from src.el_common.enums import InventorySide, RaterRole, TradeOfferStatus
from src.el_common.errors import InsufficientItemsError, InternalError
from src.el_inventory.domain.models import InventoryStack
from src.el_trade.domain.engine import TradeEngine
from src.el_trade.domain.models import TradeHistory, TradeOffer

ACTIVE = TradeOfferStatus.ACTIVE.value


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class SequentialIds:
    """Numeric string ids, increasing like snowflakes."""

    def __init__(self, start: int = 1000) -> None:
        self._counter = count(start)

    def __call__(self) -> str:
        return str(next(self._counter))


class InMemoryLedger:
    def __init__(self) -> None:
        self._stacks: dict[tuple[str, str], list[int]] = {}  # [quantity, reserved]
        self._failures: dict[str, list] = {}
        self.calls: list[tuple[str, str]] = []

    # --- test helpers ---

    def seed(self, user_id: str, **items: int) -> None:
        for item_id, qty in items.items():
            self._stack(user_id, item_id)[0] += qty

    def owned(self, user_id: str, item_id: str) -> int:
        return self._stacks.get((user_id, item_id), [0, 0])[0]

    def reserved(self, user_id: str, item_id: str) -> int:
        return self._stacks.get((user_id, item_id), [0, 0])[1]

    def available(self, user_id: str, item_id: str) -> int:
        return self.owned(user_id, item_id) - self.reserved(user_id, item_id)

    def holdings(self, user_id: str) -> dict[str, int]:
        return {
            item_id: qty
            for (owner, item_id), (qty, _) in self._stacks.items()
            if owner == user_id and qty > 0
        }

    def total(self, item_id: str) -> int:
        return sum(qty for (_, i), (qty, _) in self._stacks.items() if i == item_id)

    def fail_on(self, op: str, exc: BaseException, nth: int = 1) -> None:
        """Raise `exc` on the nth upcoming call of `op`, before it applies."""
        self._failures[op] = [nth, exc]

    # --- ItemLedgerProtocol ---

    async def available_quantity(self, db, user_id: str, item_id: str) -> int:
        await asyncio.sleep(0)
        return self.available(user_id, item_id)

    async def reserve(
        self, db, user_id: str, bundle: ItemBundle, ref_id: str,
        side: InventorySide = InventorySide.OFFERING,
    ) -> None:
        await self._enter("reserve", user_id)
        for item in bundle:
            available = self.available(user_id, item.item_id)
            if available < item.quantity:
                raise InsufficientItemsError(side, item.item_id, item.quantity, available)
        for item in bundle:
            self._stack(user_id, item.item_id)[1] += item.quantity

    async def release(self, db, user_id: str, bundle: ItemBundle, ref_id: str) -> None:
        await self._enter("release", user_id)
        self._require_reserved(user_id, bundle)
        for item in bundle:
            self._stack(user_id, item.item_id)[1] -= item.quantity

    async def settle_reserved(self, db, user_id: str, bundle: ItemBundle, ref_id: str) -> None:
        await self._enter("settle_reserved", user_id)
        self._require_reserved(user_id, bundle)
        for item in bundle:
            stack = self._stack(user_id, item.item_id)
            stack[0] -= item.quantity
            stack[1] -= item.quantity

    async def restore_reserved(self, db, user_id: str, bundle: ItemBundle, ref_id: str) -> None:
        await self._enter("restore_reserved", user_id)
        for item in bundle:
            stack = self._stack(user_id, item.item_id)
            stack[0] += item.quantity
            stack[1] += item.quantity

    async def debit(
        self, db, user_id: str, bundle: ItemBundle, ref_id: str,
        side: InventorySide = InventorySide.REQUESTING,
    ) -> None:
        await self._enter("debit", user_id)
        for item in bundle:
            available = self.available(user_id, item.item_id)
            if available < item.quantity:
                raise InsufficientItemsError(side, item.item_id, item.quantity, available)
        for item in bundle:
            self._stack(user_id, item.item_id)[0] -= item.quantity

    async def credit(self, db, user_id: str, bundle: ItemBundle, ref_id: str) -> None:
        await self._enter("credit", user_id)
        for item in bundle:
            self._stack(user_id, item.item_id)[0] += item.quantity

    async def list_stacks(self, db, user_id: str) -> list[InventoryStack]:
        await asyncio.sleep(0)
        return [
            InventoryStack(user_id=owner, item_id=item_id, quantity=q, reserved_quantity=r)
            for (owner, item_id), (q, r) in sorted(self._stacks.items())
            if owner == user_id and q > 0
        ]

    # --- internals ---

    def _stack(self, user_id: str, item_id: str) -> list[int]:
        return self._stacks.setdefault((user_id, item_id), [0, 0])

    def _require_reserved(self, user_id: str, bundle: ItemBundle) -> None:
        for item in bundle:
            if self.reserved(user_id, item.item_id) < item.quantity:
                raise InternalError(f"reservation missing for {user_id}/{item.item_id}")

    async def _enter(self, op: str, user_id: str) -> None:
        await asyncio.sleep(0)
        self.calls.append((op, user_id))
        failure = self._failures.get(op)
        if failure is not None:
            failure[0] -= 1
            if failure[0] == 0:
                del self._failures[op]
                raise failure[1]


def _effective_status(row: TradeOffer, now: datetime) -> str:
    if row.status == ACTIVE and row.expires_at <= now:
        return TradeOfferStatus.EXPIRED.value
    return row.status


class InMemoryOfferStore:
    def __init__(self) -> None:
        self.rows: dict[str, TradeOffer] = {}
        self.fail_insert: BaseException | None = None

    async def insert(self, db, offer: TradeOffer) -> None:
        await asyncio.sleep(0)
        if self.fail_insert is not None:
            exc, self.fail_insert = self.fail_insert, None
            raise exc
        self.rows[offer.id] = replace(offer)

    async def get_by_id(self, db, offer_id: str) -> TradeOffer | None:
        await asyncio.sleep(0)
        row = self.rows.get(offer_id)
        return replace(row) if row else None

    async def claim(
        self, db, offer_id: str, acceptor_id: str, acceptor_username: str | None, now: datetime
    ) -> TradeOffer | None:
        await asyncio.sleep(0)
        row = self.rows.get(offer_id)
        if row is None or row.status != ACTIVE or row.expires_at <= now:
            return None
        row.status = TradeOfferStatus.COMPLETED.value
        row.completed_at = now
        row.completed_by_user_id = acceptor_id
        row.completed_by_username = acceptor_username
        row.updated_at = now
        return replace(row)

    async def mark_cancelled(self, db, offer_id: str, owner_id: str) -> TradeOffer | None:
        await asyncio.sleep(0)
        row = self.rows.get(offer_id)
        if row is None or row.status != ACTIVE or row.owner_id != owner_id:
            return None
        row.status = TradeOfferStatus.CANCELLED.value
        return replace(row)

    async def mark_expired(self, db, offer_id: str, now: datetime) -> TradeOffer | None:
        await asyncio.sleep(0)
        row = self.rows.get(offer_id)
        if row is None or row.status != ACTIVE or row.expires_at > now:
            return None
        row.status = TradeOfferStatus.EXPIRED.value
        return replace(row)

    async def reopen(self, db, offer_id: str, from_status: TradeOfferStatus) -> bool:
        await asyncio.sleep(0)
        row = self.rows.get(offer_id)
        if row is None or row.status != from_status.value:
            return False
        row.status = ACTIVE
        row.completed_at = None
        row.completed_by_user_id = None
        row.completed_by_username = None
        return True

    async def list_by_owner(
        self, db, owner_id: str, status: str | None, now: datetime,
        cursor_id: str | None, limit: int,
    ) -> list[TradeOffer]:
        await asyncio.sleep(0)
        rows = [
            r for r in self.rows.values()
            if r.owner_id == owner_id
            and (status is None or _effective_status(r, now) == status)
        ]
        return self._page(rows, cursor_id, limit)

    async def list_available(
        self, db, viewer_id: str, now: datetime, cursor_id: str | None, limit: int
    ) -> list[TradeOffer]:
        await asyncio.sleep(0)
        rows = [
            r for r in self.rows.values()
            if r.status == ACTIVE and r.expires_at > now and r.owner_id != viewer_id
        ]
        return self._page(rows, cursor_id, limit)

    async def list_stale(self, db, now: datetime, limit: int) -> list[TradeOffer]:
        await asyncio.sleep(0)
        rows = [r for r in self.rows.values() if r.status == ACTIVE and r.expires_at <= now]
        rows.sort(key=lambda r: r.expires_at)
        return [replace(r) for r in rows[:limit]]

    @staticmethod
    def _page(rows: list[TradeOffer], cursor_id: str | None, limit: int) -> list[TradeOffer]:
        if cursor_id is not None:
            rows = [r for r in rows if int(r.id) < int(cursor_id)]
        rows.sort(key=lambda r: int(r.id), reverse=True)
        return [replace(r) for r in rows[:limit]]


class InMemoryHistoryStore:
    def __init__(self) -> None:
        self.rows: dict[str, TradeHistory] = {}
        self.fail_append: BaseException | None = None

    async def append(self, db, record: TradeHistory) -> None:
        await asyncio.sleep(0)
        if self.fail_append is not None:
            exc, self.fail_append = self.fail_append, None
            raise exc
        self.rows[record.id] = replace(record)

    async def get_by_id(self, db, history_id: str) -> TradeHistory | None:
        await asyncio.sleep(0)
        row = self.rows.get(history_id)
        return replace(row) if row else None

    async def set_rating(
        self, db, history_id: str, role: RaterRole, rating: int, comment: str | None
    ) -> TradeHistory | None:
        await asyncio.sleep(0)
        row = self.rows.get(history_id)
        if row is None:
            return None
        if role == RaterRole.SELLER:
            if row.seller_rating is not None:
                return None
            row.seller_rating, row.seller_comment = rating, comment
        else:
            if row.buyer_rating is not None:
                return None
            row.buyer_rating, row.buyer_comment = rating, comment
        return replace(row)

    async def list_by_participant(
        self, db, user_id: str, cursor_id: str | None, limit: int
    ) -> list[TradeHistory]:
        await asyncio.sleep(0)
        rows = [r for r in self.rows.values() if user_id in (r.seller_id, r.buyer_id)]
        if cursor_id is not None:
            rows = [r for r in rows if int(r.id) < int(cursor_id)]
        rows.sort(key=lambda r: int(r.id), reverse=True)
        return [replace(r) for r in rows[:limit]]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def offer_store() -> InMemoryOfferStore:
    return InMemoryOfferStore()


@pytest.fixture
def history_store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def engine(
    ledger: InMemoryLedger,
    offer_store: InMemoryOfferStore,
    history_store: InMemoryHistoryStore,
    clock: FakeClock,
) -> TradeEngine:
    return TradeEngine(
        ledger=ledger,
        offers=offer_store,
        history=history_store,
        clock=clock,
        id_factory=SequentialIds(),
        expiry_options=[1, 6, 12, 24, 48, 72],
    )


@pytest.fixture
def db() -> MagicMock:
    """The fakes ignore the session; engine calls only pass it through."""
    return MagicMock()
