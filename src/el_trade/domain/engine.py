"""TradeEngine — offer lifecycle and the two-party item exchange.

The engine never commits. It runs inside the caller's session and leaves
commit / rollback to the application service, so on PostgreSQL every
operation below is one transaction. On top of that, every multi-step
operation keeps a compensation journal: each applied leg pushes its inverse,
and on failure the journal is unwound newest-first before the error is
raised. Callers therefore never observe a half-applied exchange even with
a ledger that has no cross-row transaction.

Exactly-once resolution of an offer comes from the offer store's
compare-and-swap on status (claim / mark_cancelled / mark_expired). The
engine holds no locks and no per-offer state.

State machine:
    active ──claim──────▶ completed
    active ──cancel─────▶ cancelled
    active ──expire─────▶ expired     (lazy, on any read / accept / cancel)
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.el_common.bundle import ItemBundle
from src.el_common.datetime_utils import Clock, hours_after, utc_now
from src.el_common.enums import InventorySide, OfferEventType, TradeOfferStatus
from src.el_common.errors import (
    AlreadyRatedError,
    AppError,
    CannotAcceptOwnOfferError,
    InsufficientItemsError,
    InvalidBundleError,
    InvalidExpiryError,
    InvalidRatingError,
    NotLoggedInError,
    NotOfferOwnerError,
    OfferExpiredError,
    OfferNotActiveError,
    OfferNotFoundError,
    StorageError,
    TradeHistoryNotFoundError,
)
from src.el_common.id_generator import generate_id
from src.el_inventory.domain.repository import ItemLedgerProtocol
from src.el_trade.domain.models import ExchangeSnapshot, OfferEvent, TradeHistory, TradeOffer
from src.el_trade.domain.repository import HistoryStoreProtocol, OfferStoreProtocol

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5

Outbox = list[OfferEvent]


class _CompensationJournal:
    """Inverse actions of the legs applied so far; unwound newest first."""

    def __init__(self, offer_id: str, operation: str) -> None:
        self._offer_id = offer_id
        self._operation = operation
        self._undo: list[tuple[str, Callable[[], Awaitable[object]]]] = []

    def push(self, label: str, undo: Callable[[], Awaitable[object]]) -> None:
        self._undo.append((label, undo))

    async def unwind(self) -> None:
        while self._undo:
            label, undo = self._undo.pop()
            try:
                await undo()
            except Exception:
                # Keep unwinding; the transaction rollback is the last line
                logger.exception(
                    "Compensation failed: op=%s offer=%s step=%s",
                    self._operation,
                    self._offer_id,
                    label,
                )
            else:
                logger.warning(
                    "Compensated: op=%s offer=%s step=%s",
                    self._operation,
                    self._offer_id,
                    label,
                )


def _emit(outbox: Outbox | None, event: OfferEvent) -> None:
    if outbox is not None:
        outbox.append(event)


def _clean_text(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


class TradeEngine:
    def __init__(
        self,
        ledger: ItemLedgerProtocol,
        offers: OfferStoreProtocol,
        history: HistoryStoreProtocol,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = generate_id,
        expiry_options: Iterable[int] | None = None,
    ) -> None:
        self._ledger = ledger
        self._offers = offers
        self._history = history
        self._clock = clock
        self._id_factory = id_factory
        self._expiry_options = frozenset(
            expiry_options if expiry_options is not None
            else settings.TRADE_EXPIRY_HOURS_OPTIONS
        )

    @property
    def expiry_options(self) -> list[int]:
        return sorted(self._expiry_options)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create_offer(
        self,
        db: AsyncSession,
        owner_id: str | None,
        offering: ItemBundle,
        requesting: ItemBundle,
        expires_in_hours: int,
        message: str | None = None,
        owner_username: str | None = None,
        outbox: Outbox | None = None,
    ) -> TradeOffer:
        """Reserve the offering bundle and open an active offer."""
        if not owner_id:
            raise NotLoggedInError()
        if not offering.is_disjoint(requesting):
            overlap = ", ".join(sorted(offering.item_ids & requesting.item_ids))
            raise InvalidBundleError(f"items cannot be both offered and requested: {overlap}")
        if isinstance(expires_in_hours, bool) or expires_in_hours not in self._expiry_options:
            raise InvalidExpiryError(expires_in_hours, self.expiry_options)

        await self._check_holdings(db, owner_id, offering, InventorySide.OFFERING)

        now = self._clock()
        offer = TradeOffer(
            id=self._id_factory(),
            owner_id=owner_id,
            owner_username=_clean_text(owner_username),
            offering=offering,
            requesting=requesting,
            status=TradeOfferStatus.ACTIVE.value,
            message=_clean_text(message),
            created_at=now,
            expires_at=hours_after(now, expires_in_hours),
            updated_at=now,
        )

        journal = _CompensationJournal(offer.id, "create_offer")
        try:
            # Conditional reserve; a concurrent spend still surfaces as OFFERING shortage
            await self._ledger.reserve(
                db, owner_id, offering, offer.id, side=InventorySide.OFFERING
            )
            journal.push(
                "release reservation",
                lambda: self._ledger.release(db, owner_id, offering, offer.id),
            )
            await self._offers.insert(db, offer)
        except AppError:
            await journal.unwind()
            raise
        except Exception as exc:
            await journal.unwind()
            raise StorageError(exc, "create_offer") from exc

        logger.info(
            "Offer created: offer=%s owner=%s offering=%r requesting=%r expires_at=%s",
            offer.id,
            owner_id,
            offering,
            requesting,
            offer.expires_at.isoformat(),
        )
        _emit(
            outbox,
            OfferEvent(
                event_type=OfferEventType.OFFER_CREATED,
                offer_id=offer.id,
                owner_id=owner_id,
                status=offer.status,
                occurred_at=now,
            ),
        )
        return offer

    # ------------------------------------------------------------------
    # accept
    # ------------------------------------------------------------------

    async def accept_offer(
        self,
        db: AsyncSession,
        offer_id: str,
        acceptor_id: str | None,
        acceptor_username: str | None = None,
        outbox: Outbox | None = None,
    ) -> TradeHistory:
        """Swap both bundles and record the trade. At most one accept per offer wins."""
        if not acceptor_id:
            raise NotLoggedInError()

        offer = await self._load_current(db, offer_id, outbox)
        self._ensure_open(offer)
        if offer.owner_id == acceptor_id:
            raise CannotAcceptOwnOfferError()
        # Advisory: the conditional debit below re-checks atomically
        await self._check_holdings(db, acceptor_id, offer.requesting, InventorySide.REQUESTING)

        acceptor_username = _clean_text(acceptor_username)
        claimed_at = self._clock()
        claimed = await self._offers.claim(db, offer.id, acceptor_id, acceptor_username, claimed_at)
        if claimed is None:
            raise await self._explain_lost_claim(db, offer.id, outbox)

        owner_id = offer.owner_id
        journal = _CompensationJournal(offer.id, "accept_offer")
        journal.push(
            "reopen claimed offer",
            lambda: self._offers.reopen(db, offer.id, TradeOfferStatus.COMPLETED),
        )
        try:
            await self._ledger.debit(
                db, acceptor_id, offer.requesting, offer.id, side=InventorySide.REQUESTING
            )
            journal.push(
                "refund acceptor",
                lambda: self._ledger.credit(db, acceptor_id, offer.requesting, offer.id),
            )

            await self._ledger.credit(db, owner_id, offer.requesting, offer.id)
            journal.push(
                "take back from owner",
                lambda: self._ledger.debit(db, owner_id, offer.requesting, offer.id),
            )

            await self._ledger.settle_reserved(db, owner_id, offer.offering, offer.id)
            journal.push(
                "restore owner reservation",
                lambda: self._ledger.restore_reserved(db, owner_id, offer.offering, offer.id),
            )

            await self._ledger.credit(db, acceptor_id, offer.offering, offer.id)
            journal.push(
                "take back from acceptor",
                lambda: self._ledger.debit(db, acceptor_id, offer.offering, offer.id),
            )

            record = TradeHistory(
                id=self._id_factory(),
                offer_id=offer.id,
                seller_id=owner_id,
                seller_username=offer.owner_username,
                buyer_id=acceptor_id,
                buyer_username=acceptor_username,
                items_exchanged=ExchangeSnapshot(
                    offered=offer.offering, requested=offer.requesting
                ),
                completed_at=claimed.completed_at or claimed_at,
            )
            await self._history.append(db, record)
        except AppError as exc:
            logger.warning("Accept aborted: offer=%s acceptor=%s error=%s", offer.id, acceptor_id, exc)
            await journal.unwind()
            raise
        except Exception as exc:
            logger.error("Accept failed: offer=%s acceptor=%s error=%r", offer.id, acceptor_id, exc)
            await journal.unwind()
            raise StorageError(exc, "accept_offer") from exc

        logger.info(
            "Offer accepted: offer=%s seller=%s buyer=%s history=%s",
            offer.id,
            owner_id,
            acceptor_id,
            record.id,
        )
        _emit(
            outbox,
            OfferEvent(
                event_type=OfferEventType.OFFER_COMPLETED,
                offer_id=offer.id,
                owner_id=owner_id,
                counterparty_id=acceptor_id,
                history_id=record.id,
                status=TradeOfferStatus.COMPLETED.value,
                occurred_at=record.completed_at,
            ),
        )
        return record

    async def _explain_lost_claim(
        self, db: AsyncSession, offer_id: str, outbox: Outbox | None
    ) -> AppError:
        """The claim CAS matched no row: the offer went stale or someone else resolved it."""
        current = await self._load_current(db, offer_id, outbox)
        if current.status == TradeOfferStatus.EXPIRED.value:
            return OfferExpiredError(offer_id)
        logger.warning("Accept lost race: offer=%s status=%s", offer_id, current.status)
        return OfferNotActiveError(offer_id, current.status)

    # ------------------------------------------------------------------
    # cancel / expire
    # ------------------------------------------------------------------

    async def cancel_offer(
        self,
        db: AsyncSession,
        offer_id: str,
        requester_id: str | None,
        outbox: Outbox | None = None,
    ) -> TradeOffer:
        """Owner withdraws an active offer; the reservation goes back to spendable."""
        if not requester_id:
            raise NotLoggedInError()

        offer = await self._load(db, offer_id)
        if offer.owner_id != requester_id:
            raise NotOfferOwnerError()
        offer = await self._expire_if_stale(db, offer, self._clock(), outbox)
        self._ensure_open(offer)

        cancelled = await self._offers.mark_cancelled(db, offer.id, requester_id)
        if cancelled is None:
            current = await self._load(db, offer.id)
            logger.warning("Cancel lost race: offer=%s status=%s", offer.id, current.status)
            raise OfferNotActiveError(offer.id, current.status)

        journal = _CompensationJournal(offer.id, "cancel_offer")
        journal.push(
            "reopen cancelled offer",
            lambda: self._offers.reopen(db, offer.id, TradeOfferStatus.CANCELLED),
        )
        try:
            await self._ledger.release(db, offer.owner_id, offer.offering, offer.id)
        except AppError:
            await journal.unwind()
            raise
        except Exception as exc:
            await journal.unwind()
            raise StorageError(exc, "cancel_offer") from exc

        logger.info("Offer cancelled: offer=%s owner=%s", offer.id, offer.owner_id)
        _emit(
            outbox,
            OfferEvent(
                event_type=OfferEventType.OFFER_CANCELLED,
                offer_id=offer.id,
                owner_id=offer.owner_id,
                status=cancelled.status,
                occurred_at=cancelled.updated_at or self._clock(),
            ),
        )
        return cancelled

    async def get_offer(
        self, db: AsyncSession, offer_id: str, outbox: Outbox | None = None
    ) -> TradeOffer:
        """Read path. A stale active offer is expired before it is returned."""
        return await self._load_current(db, offer_id, outbox)

    async def expire_stale_offers(
        self,
        db: AsyncSession,
        limit: int | None = None,
        outbox: Outbox | None = None,
    ) -> list[TradeOffer]:
        """Sweep for listing freshness. Correctness never depends on it running."""
        now = self._clock()
        stale = await self._offers.list_stale(db, now, limit or settings.TRADE_SWEEP_BATCH_SIZE)
        expired: list[TradeOffer] = []
        for offer in stale:
            current = await self._expire_if_stale(db, offer, now, outbox)
            if current.status == TradeOfferStatus.EXPIRED.value:
                expired.append(current)
        if stale:
            logger.info("Expiry sweep: expired=%d candidates=%d", len(expired), len(stale))
        return expired

    async def _expire_if_stale(
        self,
        db: AsyncSession,
        offer: TradeOffer,
        now: datetime,
        outbox: Outbox | None,
    ) -> TradeOffer:
        """Lazy expiry. Returns the offer as it stands afterwards."""
        if not offer.is_stale(now):
            return offer

        expired = await self._offers.mark_expired(db, offer.id, now)
        if expired is None:
            # Someone else resolved it between our read and the CAS
            current = await self._load(db, offer.id)
            logger.warning("Lazy expiry lost race: offer=%s status=%s", offer.id, current.status)
            return current

        journal = _CompensationJournal(offer.id, "expire_offer")
        journal.push(
            "reopen expired offer",
            lambda: self._offers.reopen(db, offer.id, TradeOfferStatus.EXPIRED),
        )
        try:
            await self._ledger.release(db, expired.owner_id, expired.offering, expired.id)
        except AppError:
            await journal.unwind()
            raise
        except Exception as exc:
            await journal.unwind()
            raise StorageError(exc, "expire_offer") from exc

        logger.info("Offer expired: offer=%s owner=%s", expired.id, expired.owner_id)
        _emit(
            outbox,
            OfferEvent(
                event_type=OfferEventType.OFFER_EXPIRED,
                offer_id=expired.id,
                owner_id=expired.owner_id,
                status=expired.status,
                occurred_at=now,
            ),
        )
        return expired

    # ------------------------------------------------------------------
    # rating / history
    # ------------------------------------------------------------------

    async def rate_trade(
        self,
        db: AsyncSession,
        history_id: str,
        rater_id: str | None,
        rating: int,
        comment: str | None = None,
        outbox: Outbox | None = None,
    ) -> TradeHistory:
        """Set the rater's side of a history row, once."""
        if not rater_id:
            raise NotLoggedInError()
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise InvalidRatingError(rating)
        if not MIN_RATING <= rating <= MAX_RATING:
            raise InvalidRatingError(rating)

        record = await self._history.get_by_id(db, history_id)
        if record is None:
            raise TradeHistoryNotFoundError(history_id)
        role = record.role_of(rater_id)
        if role is None:
            raise NotOfferOwnerError("Only the two parties of a trade can rate it")
        if record.rating_of(role) is not None:
            raise AlreadyRatedError()

        updated = await self._history.set_rating(db, history_id, role, rating, _clean_text(comment))
        if updated is None:
            raise AlreadyRatedError()

        logger.info(
            "Trade rated: history=%s rater=%s role=%s rating=%d",
            history_id,
            rater_id,
            role.value,
            rating,
        )
        _emit(
            outbox,
            OfferEvent(
                event_type=OfferEventType.TRADE_RATED,
                offer_id=updated.offer_id,
                owner_id=updated.seller_id,
                counterparty_id=updated.buyer_id,
                history_id=updated.id,
                status=TradeOfferStatus.COMPLETED.value,
                occurred_at=self._clock(),
            ),
        )
        return updated

    # ------------------------------------------------------------------
    # listings
    # ------------------------------------------------------------------

    async def list_my_offers(
        self,
        db: AsyncSession,
        user_id: str | None,
        status: str | None = None,
        cursor_id: str | None = None,
        limit: int = 20,
        outbox: Outbox | None = None,
    ) -> list[TradeOffer]:
        """Owner's offers, newest first. Stale actives on the page are expired."""
        if not user_id:
            raise NotLoggedInError()
        now = self._clock()
        offers = await self._offers.list_by_owner(
            db, user_id, status, now, cursor_id, limit
        )
        return [await self._expire_if_stale(db, offer, now, outbox) for offer in offers]

    async def list_available_offers(
        self,
        db: AsyncSession,
        user_id: str | None,
        cursor_id: str | None = None,
        limit: int = 20,
    ) -> list[TradeOffer]:
        """Other players' offers that can still be accepted."""
        if not user_id:
            raise NotLoggedInError()
        return await self._offers.list_available(db, user_id, self._clock(), cursor_id, limit)

    async def list_history(
        self,
        db: AsyncSession,
        user_id: str | None,
        cursor_id: str | None = None,
        limit: int = 20,
    ) -> list[TradeHistory]:
        if not user_id:
            raise NotLoggedInError()
        return await self._history.list_by_participant(db, user_id, cursor_id, limit)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _load(self, db: AsyncSession, offer_id: str) -> TradeOffer:
        offer = await self._offers.get_by_id(db, offer_id)
        if offer is None:
            raise OfferNotFoundError(offer_id)
        return offer

    async def _load_current(
        self, db: AsyncSession, offer_id: str, outbox: Outbox | None
    ) -> TradeOffer:
        offer = await self._load(db, offer_id)
        return await self._expire_if_stale(db, offer, self._clock(), outbox)

    @staticmethod
    def _ensure_open(offer: TradeOffer) -> None:
        if offer.status == TradeOfferStatus.EXPIRED.value:
            raise OfferExpiredError(offer.id)
        if not offer.is_active:
            raise OfferNotActiveError(offer.id, offer.status)

    async def _check_holdings(
        self, db: AsyncSession, user_id: str, bundle: ItemBundle, side: InventorySide
    ) -> None:
        for item in bundle:
            available = await self._ledger.available_quantity(db, user_id, item.item_id)
            if available < item.quantity:
                raise InsufficientItemsError(side, item.item_id, item.quantity, available)
