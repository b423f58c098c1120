"""Offer store and history ledger Protocols.

Status transitions are compare-and-swap: each `mark_*` / `claim` call is a
single conditional write that returns the updated offer, or None when the
row was not in the expected state (someone else resolved it first). That
None is the engine's only concurrency signal; there is no application lock.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.el_common.enums import RaterRole, TradeOfferStatus
from src.el_trade.domain.models import TradeHistory, TradeOffer


class OfferStoreProtocol(Protocol):
    async def insert(self, db: AsyncSession, offer: TradeOffer) -> None: ...

    async def get_by_id(self, db: AsyncSession, offer_id: str) -> TradeOffer | None: ...

    async def claim(
        self,
        db: AsyncSession,
        offer_id: str,
        acceptor_id: str,
        acceptor_username: str | None,
        now: datetime,
    ) -> TradeOffer | None:
        """active → completed, only while expires_at > now."""
        ...

    async def mark_cancelled(
        self, db: AsyncSession, offer_id: str, owner_id: str
    ) -> TradeOffer | None:
        """active → cancelled, only for the owner."""
        ...

    async def mark_expired(
        self, db: AsyncSession, offer_id: str, now: datetime
    ) -> TradeOffer | None:
        """active → expired, only once expires_at <= now."""
        ...

    async def reopen(
        self, db: AsyncSession, offer_id: str, from_status: TradeOfferStatus
    ) -> bool:
        """Compensation: <from_status> → active, clearing completion fields."""
        ...

    async def list_by_owner(
        self,
        db: AsyncSession,
        owner_id: str,
        status: str | None,
        now: datetime,
        cursor_id: str | None,
        limit: int,
    ) -> list[TradeOffer]: ...

    async def list_available(
        self,
        db: AsyncSession,
        viewer_id: str,
        now: datetime,
        cursor_id: str | None,
        limit: int,
    ) -> list[TradeOffer]: ...

    async def list_stale(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[TradeOffer]: ...


class HistoryStoreProtocol(Protocol):
    async def append(self, db: AsyncSession, record: TradeHistory) -> None: ...

    async def get_by_id(self, db: AsyncSession, history_id: str) -> TradeHistory | None: ...

    async def set_rating(
        self,
        db: AsyncSession,
        history_id: str,
        role: RaterRole,
        rating: int,
        comment: str | None,
    ) -> TradeHistory | None:
        """Set one side's rating only if still unset. None means already rated."""
        ...

    async def list_by_participant(
        self,
        db: AsyncSession,
        user_id: str,
        cursor_id: str | None,
        limit: int,
    ) -> list[TradeHistory]: ...
