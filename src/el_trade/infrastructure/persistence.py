"""Offer store and history ledger — raw SQL persistence implementation.

Bundles live in JSONB columns in their wire shape
([{"item_id": ..., "quantity": ...}]) and are rebuilt into ItemBundle on read.

Ids are snowflake strings; ordering and cursor comparisons cast them to
BIGINT so that "10" sorts after "9".
"""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.el_common.bundle import ItemBundle
from src.el_common.enums import RaterRole, TradeOfferStatus
from src.el_trade.domain.models import ExchangeSnapshot, TradeHistory, TradeOffer

# ---------------------------------------------------------------------------
# SQL: trade_offers
# ---------------------------------------------------------------------------

_OFFER_COLUMNS = """
    id, owner_id, owner_username, offering_items, requesting_items,
    status, message, created_at, expires_at,
    completed_at, completed_by_user_id, completed_by_username, updated_at
"""

_INSERT_OFFER_SQL = text("""
    INSERT INTO trade_offers (id, owner_id, owner_username,
        offering_items, requesting_items, status, message, created_at, expires_at)
    VALUES (:id, :owner_id, :owner_username,
        CAST(:offering_items AS JSONB), CAST(:requesting_items AS JSONB),
        :status, :message, :created_at, :expires_at)
""")

_GET_OFFER_BY_ID_SQL = text(f"""
    SELECT {_OFFER_COLUMNS}
    FROM trade_offers WHERE id = :id
""")

# CAS active → completed. The expiry guard makes a stale offer unclaimable
# even if nobody has lazily expired it yet.
_CLAIM_OFFER_SQL = text(f"""
    UPDATE trade_offers
    SET status = 'completed',
        completed_at = :now,
        completed_by_user_id = :acceptor_id,
        completed_by_username = :acceptor_username,
        updated_at = NOW()
    WHERE id = :id
      AND status = 'active'
      AND expires_at > :now
    RETURNING {_OFFER_COLUMNS}
""")

_CANCEL_OFFER_SQL = text(f"""
    UPDATE trade_offers
    SET status = 'cancelled', updated_at = NOW()
    WHERE id = :id
      AND owner_id = :owner_id
      AND status = 'active'
    RETURNING {_OFFER_COLUMNS}
""")

_EXPIRE_OFFER_SQL = text(f"""
    UPDATE trade_offers
    SET status = 'expired', updated_at = NOW()
    WHERE id = :id
      AND status = 'active'
      AND expires_at <= :now
    RETURNING {_OFFER_COLUMNS}
""")

_REOPEN_OFFER_SQL = text("""
    UPDATE trade_offers
    SET status = 'active',
        completed_at = NULL,
        completed_by_user_id = NULL,
        completed_by_username = NULL,
        updated_at = NOW()
    WHERE id = :id AND status = :from_status
    RETURNING id
""")

# Filters on effective status: a stale active row counts as expired.
_LIST_BY_OWNER_SQL = text(f"""
    SELECT {_OFFER_COLUMNS}
    FROM trade_offers
    WHERE owner_id = :owner_id
      AND (CAST(:status AS TEXT) IS NULL
           OR (CAST(:status AS TEXT) = 'active'
               AND status = 'active' AND expires_at > :now)
           OR (CAST(:status AS TEXT) = 'expired'
               AND (status = 'expired'
                    OR (status = 'active' AND expires_at <= :now)))
           OR (CAST(:status AS TEXT) NOT IN ('active', 'expired')
               AND status = :status))
      AND (CAST(:cursor_id AS TEXT) IS NULL
           OR CAST(id AS BIGINT) < CAST(:cursor_id AS BIGINT))
    ORDER BY CAST(id AS BIGINT) DESC
    LIMIT :limit
""")

_LIST_AVAILABLE_SQL = text(f"""
    SELECT {_OFFER_COLUMNS}
    FROM trade_offers
    WHERE status = 'active'
      AND expires_at > :now
      AND owner_id <> :viewer_id
      AND (CAST(:cursor_id AS TEXT) IS NULL
           OR CAST(id AS BIGINT) < CAST(:cursor_id AS BIGINT))
    ORDER BY CAST(id AS BIGINT) DESC
    LIMIT :limit
""")

# Concurrent sweepers skip each other's rows instead of blocking
_LIST_STALE_SQL = text(f"""
    SELECT {_OFFER_COLUMNS}
    FROM trade_offers
    WHERE status = 'active' AND expires_at <= :now
    ORDER BY expires_at ASC
    LIMIT :limit
    FOR UPDATE SKIP LOCKED
""")

# ---------------------------------------------------------------------------
# SQL: trade_history
# ---------------------------------------------------------------------------

_HISTORY_COLUMNS = """
    id, offer_id, seller_id, seller_username, buyer_id, buyer_username,
    items_exchanged, completed_at,
    seller_rating, seller_comment, buyer_rating, buyer_comment
"""

_INSERT_HISTORY_SQL = text("""
    INSERT INTO trade_history (id, offer_id, seller_id, seller_username,
        buyer_id, buyer_username, items_exchanged, completed_at)
    VALUES (:id, :offer_id, :seller_id, :seller_username,
        :buyer_id, :buyer_username, CAST(:items_exchanged AS JSONB), :completed_at)
""")

_GET_HISTORY_BY_ID_SQL = text(f"""
    SELECT {_HISTORY_COLUMNS}
    FROM trade_history WHERE id = :id
""")

# One statement per side: a rating is written once and never overwritten
_SET_SELLER_RATING_SQL = text(f"""
    UPDATE trade_history
    SET seller_rating = :rating, seller_comment = :comment
    WHERE id = :id AND seller_rating IS NULL
    RETURNING {_HISTORY_COLUMNS}
""")

_SET_BUYER_RATING_SQL = text(f"""
    UPDATE trade_history
    SET buyer_rating = :rating, buyer_comment = :comment
    WHERE id = :id AND buyer_rating IS NULL
    RETURNING {_HISTORY_COLUMNS}
""")

_LIST_BY_PARTICIPANT_SQL = text(f"""
    SELECT {_HISTORY_COLUMNS}
    FROM trade_history
    WHERE (seller_id = :user_id OR buyer_id = :user_id)
      AND (CAST(:cursor_id AS TEXT) IS NULL
           OR CAST(id AS BIGINT) < CAST(:cursor_id AS BIGINT))
    ORDER BY CAST(id AS BIGINT) DESC
    LIMIT :limit
""")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_offer(row: Any) -> TradeOffer:
    return TradeOffer(
        id=row.id,
        owner_id=row.owner_id,
        owner_username=row.owner_username,
        offering=ItemBundle.from_json(row.offering_items),
        requesting=ItemBundle.from_json(row.requesting_items),
        status=row.status,
        message=row.message,
        created_at=row.created_at,
        expires_at=row.expires_at,
        completed_at=row.completed_at,
        completed_by_user_id=row.completed_by_user_id,
        completed_by_username=row.completed_by_username,
        updated_at=row.updated_at,
    )


def _row_to_history(row: Any) -> TradeHistory:
    return TradeHistory(
        id=row.id,
        offer_id=row.offer_id,
        seller_id=row.seller_id,
        seller_username=row.seller_username,
        buyer_id=row.buyer_id,
        buyer_username=row.buyer_username,
        items_exchanged=ExchangeSnapshot.from_json(row.items_exchanged),
        completed_at=row.completed_at,
        seller_rating=row.seller_rating,
        seller_comment=row.seller_comment,
        buyer_rating=row.buyer_rating,
        buyer_comment=row.buyer_comment,
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class OfferRepository:
    """Concrete implementation of OfferStoreProtocol using raw SQL."""

    async def insert(self, db: AsyncSession, offer: TradeOffer) -> None:
        await db.execute(
            _INSERT_OFFER_SQL,
            {
                "id": offer.id,
                "owner_id": offer.owner_id,
                "owner_username": offer.owner_username,
                "offering_items": json.dumps(offer.offering.to_json()),
                "requesting_items": json.dumps(offer.requesting.to_json()),
                "status": offer.status,
                "message": offer.message,
                "created_at": offer.created_at,
                "expires_at": offer.expires_at,
            },
        )

    async def get_by_id(self, db: AsyncSession, offer_id: str) -> TradeOffer | None:
        result = await db.execute(_GET_OFFER_BY_ID_SQL, {"id": offer_id})
        row = result.fetchone()
        return _row_to_offer(row) if row else None

    async def claim(
        self,
        db: AsyncSession,
        offer_id: str,
        acceptor_id: str,
        acceptor_username: str | None,
        now: datetime,
    ) -> TradeOffer | None:
        result = await db.execute(
            _CLAIM_OFFER_SQL,
            {
                "id": offer_id,
                "acceptor_id": acceptor_id,
                "acceptor_username": acceptor_username,
                "now": now,
            },
        )
        row = result.fetchone()
        return _row_to_offer(row) if row else None

    async def mark_cancelled(
        self, db: AsyncSession, offer_id: str, owner_id: str
    ) -> TradeOffer | None:
        result = await db.execute(_CANCEL_OFFER_SQL, {"id": offer_id, "owner_id": owner_id})
        row = result.fetchone()
        return _row_to_offer(row) if row else None

    async def mark_expired(
        self, db: AsyncSession, offer_id: str, now: datetime
    ) -> TradeOffer | None:
        result = await db.execute(_EXPIRE_OFFER_SQL, {"id": offer_id, "now": now})
        row = result.fetchone()
        return _row_to_offer(row) if row else None

    async def reopen(
        self, db: AsyncSession, offer_id: str, from_status: TradeOfferStatus
    ) -> bool:
        result = await db.execute(
            _REOPEN_OFFER_SQL, {"id": offer_id, "from_status": from_status.value}
        )
        return result.fetchone() is not None

    async def list_by_owner(
        self,
        db: AsyncSession,
        owner_id: str,
        status: str | None,
        now: datetime,
        cursor_id: str | None,
        limit: int,
    ) -> list[TradeOffer]:
        result = await db.execute(
            _LIST_BY_OWNER_SQL,
            {
                "owner_id": owner_id,
                "status": status,
                "now": now,
                "cursor_id": cursor_id,
                "limit": limit,
            },
        )
        return [_row_to_offer(row) for row in result.fetchall()]

    async def list_available(
        self,
        db: AsyncSession,
        viewer_id: str,
        now: datetime,
        cursor_id: str | None,
        limit: int,
    ) -> list[TradeOffer]:
        result = await db.execute(
            _LIST_AVAILABLE_SQL,
            {"viewer_id": viewer_id, "now": now, "cursor_id": cursor_id, "limit": limit},
        )
        return [_row_to_offer(row) for row in result.fetchall()]

    async def list_stale(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[TradeOffer]:
        result = await db.execute(_LIST_STALE_SQL, {"now": now, "limit": limit})
        return [_row_to_offer(row) for row in result.fetchall()]


class TradeHistoryRepository:
    """Concrete implementation of HistoryStoreProtocol using raw SQL."""

    async def append(self, db: AsyncSession, record: TradeHistory) -> None:
        await db.execute(
            _INSERT_HISTORY_SQL,
            {
                "id": record.id,
                "offer_id": record.offer_id,
                "seller_id": record.seller_id,
                "seller_username": record.seller_username,
                "buyer_id": record.buyer_id,
                "buyer_username": record.buyer_username,
                "items_exchanged": json.dumps(record.items_exchanged.to_json()),
                "completed_at": record.completed_at,
            },
        )

    async def get_by_id(self, db: AsyncSession, history_id: str) -> TradeHistory | None:
        result = await db.execute(_GET_HISTORY_BY_ID_SQL, {"id": history_id})
        row = result.fetchone()
        return _row_to_history(row) if row else None

    async def set_rating(
        self,
        db: AsyncSession,
        history_id: str,
        role: RaterRole,
        rating: int,
        comment: str | None,
    ) -> TradeHistory | None:
        stmt = _SET_SELLER_RATING_SQL if role == RaterRole.SELLER else _SET_BUYER_RATING_SQL
        result = await db.execute(
            stmt, {"id": history_id, "rating": rating, "comment": comment}
        )
        row = result.fetchone()
        return _row_to_history(row) if row else None

    async def list_by_participant(
        self,
        db: AsyncSession,
        user_id: str,
        cursor_id: str | None,
        limit: int,
    ) -> list[TradeHistory]:
        result = await db.execute(
            _LIST_BY_PARTICIPANT_SQL,
            {"user_id": user_id, "cursor_id": cursor_id, "limit": limit},
        )
        return [_row_to_history(row) for row in result.fetchall()]
