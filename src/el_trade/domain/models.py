"""Trade domain models — pure dataclasses, no SQLAlchemy dependency."""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.el_common.bundle import ItemBundle
from src.el_common.enums import OfferEventType, RaterRole, TradeOfferStatus


@dataclass
class TradeOffer:
    id: str
    owner_id: str
    offering: ItemBundle
    requesting: ItemBundle
    expires_at: datetime
    status: str = TradeOfferStatus.ACTIVE.value
    owner_username: str | None = None
    message: str | None = None
    created_at: datetime | None = None
    # Set only on transition to completed
    completed_at: datetime | None = None
    completed_by_user_id: str | None = None
    completed_by_username: str | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == TradeOfferStatus.ACTIVE.value

    def is_expired(self, now: datetime) -> bool:
        """True once the validity window has passed, whatever the stored status."""
        return now >= self.expires_at

    def is_stale(self, now: datetime) -> bool:
        """Still marked active but past expires_at; needs a lazy expire."""
        return self.is_active and self.is_expired(now)

    def remaining_seconds(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))


@dataclass(frozen=True)
class ExchangeSnapshot:
    offered: ItemBundle
    requested: ItemBundle

    def to_json(self) -> dict[str, Any]:
        return {"offered": self.offered.to_json(), "requested": self.requested.to_json()}

    @classmethod
    def from_json(cls, raw: Any) -> "ExchangeSnapshot":
        """Accepts the decoded dict or the raw JSONB text."""
        if isinstance(raw, str):
            raw = json.loads(raw)
        return cls(
            offered=ItemBundle.from_json(raw["offered"]),
            requested=ItemBundle.from_json(raw["requested"]),
        )


@dataclass
class TradeHistory:
    id: str
    offer_id: str | None  # None once the offer row has been pruned
    seller_id: str
    buyer_id: str
    items_exchanged: ExchangeSnapshot
    completed_at: datetime
    seller_username: str | None = None
    buyer_username: str | None = None
    seller_rating: int | None = None
    seller_comment: str | None = None
    buyer_rating: int | None = None
    buyer_comment: str | None = None

    def role_of(self, user_id: str) -> RaterRole | None:
        if user_id == self.seller_id:
            return RaterRole.SELLER
        if user_id == self.buyer_id:
            return RaterRole.BUYER
        return None

    def rating_of(self, role: RaterRole) -> int | None:
        return self.seller_rating if role == RaterRole.SELLER else self.buyer_rating


@dataclass(frozen=True)
class OfferEvent:
    event_type: OfferEventType
    offer_id: str | None  # None for ratings on a pruned offer
    owner_id: str
    status: str
    occurred_at: datetime
    counterparty_id: str | None = None
    history_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "offer_id": self.offer_id,
            "owner_id": self.owner_id,
            "counterparty_id": self.counterparty_id,
            "history_id": self.history_id,
            "status": self.status,
            "occurred_at": self.occurred_at.isoformat(),
        }
