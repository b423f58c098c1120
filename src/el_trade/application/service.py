"""TradeApplicationService — transaction boundary around the TradeEngine.

Every operation runs the engine inside the request's session and then
commits; any error rolls back. Errors leave as AppError only:
SQLAlchemyError becomes StorageError (retryable) and anything unexpected
becomes UnknownError.

OfferExpiredError is the one error that commits: the lazy expiry that
detected it (offer → expired, reservation released) is kept.

Offer events collected by the engine are published only after commit.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.el_common.datetime_utils import Clock, utc_now
from src.el_common.errors import AppError, OfferExpiredError, StorageError, UnknownError
from src.el_inventory.infrastructure.persistence import InventoryRepository
from src.el_trade.application.schemas import (
    CreateOfferRequest,
    ExpireSweepResponse,
    OfferListResponse,
    OfferResponse,
    RateTradeRequest,
    TradeHistoryListResponse,
    TradeHistoryResponse,
    cursor_decode,
    cursor_encode,
)
from src.el_trade.domain.engine import Outbox, TradeEngine
from src.el_trade.domain.events import NullOfferEventPublisher, OfferEventPublisherProtocol
from src.el_trade.domain.models import TradeOffer
from src.el_trade.infrastructure.events import RedisOfferEventPublisher
from src.el_trade.infrastructure.persistence import OfferRepository, TradeHistoryRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _default_publisher() -> OfferEventPublisherProtocol:
    if settings.TRADE_EVENTS_ENABLED:
        return RedisOfferEventPublisher()
    return NullOfferEventPublisher()


class TradeApplicationService:
    def __init__(
        self,
        engine: TradeEngine | None = None,
        publisher: OfferEventPublisherProtocol | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._clock = clock
        self._engine = engine or TradeEngine(
            ledger=InventoryRepository(),
            offers=OfferRepository(),
            history=TradeHistoryRepository(),
            clock=clock,
        )
        self._publisher = publisher or _default_publisher()

    # ------------------------------------------------------------------
    # offers
    # ------------------------------------------------------------------

    async def create_offer(
        self,
        db: AsyncSession,
        owner_id: str,
        req: CreateOfferRequest,
        owner_username: str | None = None,
    ) -> OfferResponse:
        offering = req.offering_bundle()
        requesting = req.requesting_bundle()
        offer = await self._run(
            db,
            "create_offer",
            lambda outbox: self._engine.create_offer(
                db,
                owner_id,
                offering,
                requesting,
                req.expires_in_hours,
                message=req.message,
                owner_username=owner_username,
                outbox=outbox,
            ),
        )
        return OfferResponse.from_domain(offer, self._clock())

    async def accept_offer(
        self,
        db: AsyncSession,
        offer_id: str,
        acceptor_id: str,
        acceptor_username: str | None = None,
    ) -> TradeHistoryResponse:
        record = await self._run(
            db,
            "accept_offer",
            lambda outbox: self._engine.accept_offer(
                db, offer_id, acceptor_id, acceptor_username, outbox=outbox
            ),
        )
        return TradeHistoryResponse.from_domain(record, acceptor_id)

    async def cancel_offer(
        self, db: AsyncSession, offer_id: str, requester_id: str
    ) -> OfferResponse:
        offer = await self._run(
            db,
            "cancel_offer",
            lambda outbox: self._engine.cancel_offer(db, offer_id, requester_id, outbox=outbox),
        )
        return OfferResponse.from_domain(offer, self._clock())

    async def get_offer(self, db: AsyncSession, offer_id: str) -> OfferResponse:
        offer = await self._run(
            db,
            "get_offer",
            lambda outbox: self._engine.get_offer(db, offer_id, outbox=outbox),
        )
        return OfferResponse.from_domain(offer, self._clock())

    async def list_my_offers(
        self,
        db: AsyncSession,
        user_id: str,
        status: str | None,
        cursor: str | None,
        limit: int,
    ) -> OfferListResponse:
        cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        offers = await self._run(
            db,
            "list_my_offers",
            lambda outbox: self._engine.list_my_offers(
                db, user_id, status, cursor_id, limit + 1, outbox=outbox
            ),
        )
        return self._offer_page(offers, limit)

    async def list_available_offers(
        self, db: AsyncSession, user_id: str, cursor: str | None, limit: int
    ) -> OfferListResponse:
        cursor_id = cursor_decode(cursor)
        offers = await self._run(
            db,
            "list_available_offers",
            lambda outbox: self._engine.list_available_offers(db, user_id, cursor_id, limit + 1),
        )
        return self._offer_page(offers, limit)

    async def expire_stale_offers(
        self, db: AsyncSession, limit: int | None = None
    ) -> ExpireSweepResponse:
        expired = await self._run(
            db,
            "expire_stale_offers",
            lambda outbox: self._engine.expire_stale_offers(db, limit, outbox=outbox),
        )
        return ExpireSweepResponse(
            expired_count=len(expired), offer_ids=[o.id for o in expired]
        )

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    async def list_history(
        self, db: AsyncSession, user_id: str, cursor: str | None, limit: int
    ) -> TradeHistoryListResponse:
        cursor_id = cursor_decode(cursor)
        records = await self._run(
            db,
            "list_history",
            lambda outbox: self._engine.list_history(db, user_id, cursor_id, limit + 1),
        )
        has_more = len(records) > limit
        page = records[:limit]
        return TradeHistoryListResponse(
            items=[TradeHistoryResponse.from_domain(r, user_id) for r in page],
            next_cursor=cursor_encode(page[-1].id) if has_more and page else None,
            has_more=has_more,
        )

    async def rate_trade(
        self,
        db: AsyncSession,
        history_id: str,
        rater_id: str,
        req: RateTradeRequest,
    ) -> TradeHistoryResponse:
        record = await self._run(
            db,
            "rate_trade",
            lambda outbox: self._engine.rate_trade(
                db, history_id, rater_id, req.rating, req.comment, outbox=outbox
            ),
        )
        return TradeHistoryResponse.from_domain(record, rater_id)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _offer_page(self, offers: list[TradeOffer], limit: int) -> OfferListResponse:
        has_more = len(offers) > limit
        page = offers[:limit]
        now = self._clock()
        return OfferListResponse(
            items=[OfferResponse.from_domain(o, now) for o in page],
            next_cursor=cursor_encode(page[-1].id) if has_more and page else None,
            has_more=has_more,
        )

    async def _run(
        self,
        db: AsyncSession,
        operation: str,
        work: Callable[[Outbox], Awaitable[T]],
    ) -> T:
        outbox: Outbox = []
        try:
            result = await work(outbox)
        except OfferExpiredError:
            await self._commit(db, operation)
            await self._publish(outbox)
            raise
        except AppError:
            await db.rollback()
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Storage failure: op=%s error=%r", operation, exc)
            raise StorageError(exc, operation) from exc
        except Exception as exc:
            await db.rollback()
            logger.exception("Unexpected failure: op=%s", operation)
            raise UnknownError(exc) from exc

        await self._commit(db, operation)
        await self._publish(outbox)
        return result

    async def _commit(self, db: AsyncSession, operation: str) -> None:
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Commit failed: op=%s error=%r", operation, exc)
            raise StorageError(exc, operation) from exc

    async def _publish(self, outbox: Outbox) -> None:
        for event in outbox:
            await self._publisher.publish(event)
