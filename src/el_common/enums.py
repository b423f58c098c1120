"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class TradeOfferStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class InventorySide(str, Enum):
    """Which inventory an item shortage refers to."""
    OFFERING = "OFFERING"      # offer owner, checked at creation
    REQUESTING = "REQUESTING"  # acceptor, checked at accept


class MovementType(str, Enum):
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    SETTLE_RESERVED = "SETTLE_RESERVED"
    RESTORE_RESERVED = "RESTORE_RESERVED"
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class OfferEventType(str, Enum):
    OFFER_CREATED = "OFFER_CREATED"
    OFFER_COMPLETED = "OFFER_COMPLETED"
    OFFER_CANCELLED = "OFFER_CANCELLED"
    OFFER_EXPIRED = "OFFER_EXPIRED"
    TRADE_RATED = "TRADE_RATED"


class RaterRole(str, Enum):
    SELLER = "seller"
    BUYER = "buyer"


class TradeErrorKind(str, Enum):
    NOT_LOGGED_IN = "NotLoggedIn"
    OPERATOR_REQUIRED = "OperatorRequired"
    OFFER_NOT_FOUND = "OfferNotFound"
    OFFER_EXPIRED = "OfferExpired"
    OFFER_NOT_ACTIVE = "OfferNotActive"
    CANNOT_ACCEPT_OWN_OFFER = "CannotAcceptOwnOffer"
    INSUFFICIENT_ITEMS = "InsufficientItems"
    NOT_OFFER_OWNER = "NotOfferOwner"
    ALREADY_RATED = "AlreadyRated"
    INVALID_RATING = "InvalidRating"
    INVALID_BUNDLE = "InvalidBundle"
    INVALID_EXPIRY = "InvalidExpiry"
    HISTORY_NOT_FOUND = "HistoryNotFound"
    STORAGE = "StorageError"
    UNKNOWN = "Unknown"
