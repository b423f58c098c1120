"""Pydantic schemas and cursor utilities for el_trade API."""

import base64
import json
from datetime import datetime

from pydantic import BaseModel, Field

from config.settings import settings
from src.el_common.bundle import ItemBundle, TradeItem
from src.el_trade.domain.models import TradeHistory, TradeOffer

# ---------------------------------------------------------------------------
# Cursor-based pagination utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_id: str) -> str:
    """Encode a snowflake id into an opaque Base64 cursor string."""
    payload = json.dumps({"id": last_id})
    return base64.b64encode(payload.encode()).decode()


def cursor_decode(cursor: str | None) -> str | None:
    """Decode a cursor string back to the last seen id. Returns None on error."""
    if cursor is None:
        return None
    try:
        payload = json.loads(base64.b64decode(cursor.encode()).decode())
        last_id = str(payload["id"])
    except Exception:
        return None
    # Only numeric ids are ever issued; anything else would break the BIGINT cast
    return last_id if last_id.isdigit() else None


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class TradeItemIn(BaseModel):
    item_id: str = Field(..., max_length=64, description="Item definition id")
    quantity: int = Field(..., description="Positive item count")


def _to_bundle(items: list[TradeItemIn]) -> ItemBundle:
    # Bundle rules (non-empty, unique ids, positive quantities) live in ItemBundle
    return ItemBundle(TradeItem(i.item_id, i.quantity) for i in items)


class CreateOfferRequest(BaseModel):
    offering_items: list[TradeItemIn]
    requesting_items: list[TradeItemIn]
    expires_in_hours: int = Field(
        settings.TRADE_DEFAULT_EXPIRY_HOURS,
        description=f"One of {settings.TRADE_EXPIRY_HOURS_OPTIONS}",
    )
    message: str | None = Field(None, max_length=settings.TRADE_MESSAGE_MAX_LENGTH)

    def offering_bundle(self) -> ItemBundle:
        return _to_bundle(self.offering_items)

    def requesting_bundle(self) -> ItemBundle:
        return _to_bundle(self.requesting_items)


class RateTradeRequest(BaseModel):
    rating: int = Field(..., description="1 (worst) to 5 (best)")
    comment: str | None = Field(None, max_length=settings.TRADE_MESSAGE_MAX_LENGTH)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class TradeItemOut(BaseModel):
    item_id: str
    quantity: int


def _items_out(bundle: ItemBundle) -> list[TradeItemOut]:
    return [TradeItemOut(item_id=i.item_id, quantity=i.quantity) for i in bundle]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class OfferResponse(BaseModel):
    id: str
    owner_id: str
    owner_username: str | None
    offering_items: list[TradeItemOut]
    requesting_items: list[TradeItemOut]
    status: str
    message: str | None
    created_at: str | None  # ISO8601 string
    expires_at: str
    remaining_seconds: int
    completed_at: str | None
    completed_by_user_id: str | None
    completed_by_username: str | None

    @classmethod
    def from_domain(cls, offer: TradeOffer, now: datetime) -> "OfferResponse":
        return cls(
            id=offer.id,
            owner_id=offer.owner_id,
            owner_username=offer.owner_username,
            offering_items=_items_out(offer.offering),
            requesting_items=_items_out(offer.requesting),
            status=offer.status,
            message=offer.message,
            created_at=_iso(offer.created_at),
            expires_at=offer.expires_at.isoformat(),
            remaining_seconds=offer.remaining_seconds(now) if offer.is_active else 0,
            completed_at=_iso(offer.completed_at),
            completed_by_user_id=offer.completed_by_user_id,
            completed_by_username=offer.completed_by_username,
        )


class OfferListResponse(BaseModel):
    items: list[OfferResponse]
    next_cursor: str | None
    has_more: bool


class TradeHistoryResponse(BaseModel):
    id: str
    offer_id: str | None
    seller_id: str
    seller_username: str | None
    buyer_id: str
    buyer_username: str | None
    offered_items: list[TradeItemOut]
    requested_items: list[TradeItemOut]
    completed_at: str
    seller_rating: int | None
    seller_comment: str | None
    buyer_rating: int | None
    buyer_comment: str | None
    my_role: str | None = None  # "seller" / "buyer" from the caller's point of view

    @classmethod
    def from_domain(
        cls, record: TradeHistory, viewer_id: str | None = None
    ) -> "TradeHistoryResponse":
        role = record.role_of(viewer_id) if viewer_id else None
        return cls(
            id=record.id,
            offer_id=record.offer_id,
            seller_id=record.seller_id,
            seller_username=record.seller_username,
            buyer_id=record.buyer_id,
            buyer_username=record.buyer_username,
            offered_items=_items_out(record.items_exchanged.offered),
            requested_items=_items_out(record.items_exchanged.requested),
            completed_at=record.completed_at.isoformat(),
            seller_rating=record.seller_rating,
            seller_comment=record.seller_comment,
            buyer_rating=record.buyer_rating,
            buyer_comment=record.buyer_comment,
            my_role=role.value if role else None,
        )


class TradeHistoryListResponse(BaseModel):
    items: list[TradeHistoryResponse]
    next_cursor: str | None
    has_more: bool


class ExpireSweepResponse(BaseModel):
    expired_count: int
    offer_ids: list[str]
