"""Unified error codes and custom exceptions.

Every error is an AppError carrying a numeric code, a user-facing message,
an HTTP status and a TradeErrorKind discriminator, so callers can branch on
`err.kind` (or `err.retryable`) instead of parsing messages.

Error code ranges:
  1xxx: Caller identity
  2xxx: Inventory / bundles
  3xxx: Trade offers
  4xxx: Trade history / ratings
  9xxx: System
"""

from src.el_common.enums import InventorySide, TradeErrorKind


class AppError(Exception):
    """Base application error."""

    kind: TradeErrorKind = TradeErrorKind.UNKNOWN
    retryable: bool = False

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Caller identity ---

class NotLoggedInError(AppError):
    kind = TradeErrorKind.NOT_LOGGED_IN

    def __init__(self) -> None:
        super().__init__(1001, "Please log in first", 401)


class OperatorRequiredError(AppError):
    kind = TradeErrorKind.OPERATOR_REQUIRED

    def __init__(self) -> None:
        super().__init__(1002, "Operator account required", 403)


# --- 2xxx: Inventory / bundles ---

class InsufficientItemsError(AppError):
    """Not enough spendable items.

    `side` tells the UI which inventory to point at: OFFERING means the offer
    owner's items at creation time, REQUESTING means the acceptor's items at
    accept time.
    """

    kind = TradeErrorKind.INSUFFICIENT_ITEMS

    def __init__(
        self,
        side: InventorySide,
        item_id: str,
        required: int,
        available: int,
    ) -> None:
        self.side = side
        self.item_id = item_id
        self.required = required
        self.available = available
        if side == InventorySide.OFFERING:
            message = (
                f"Not enough {item_id} in your inventory to offer: "
                f"required {required}, available {available}"
            )
        else:
            message = (
                f"Not enough {item_id} in your inventory to accept this offer: "
                f"required {required}, available {available}"
            )
        super().__init__(2001, message, 422)


class InvalidBundleError(AppError):
    kind = TradeErrorKind.INVALID_BUNDLE

    def __init__(self, detail: str) -> None:
        super().__init__(2002, f"Invalid item bundle: {detail}", 422)


# --- 3xxx: Trade offers ---

class OfferNotFoundError(AppError):
    kind = TradeErrorKind.OFFER_NOT_FOUND

    def __init__(self, offer_id: str) -> None:
        self.offer_id = offer_id
        super().__init__(3001, f"Trade offer not found: {offer_id}", 404)


class OfferExpiredError(AppError):
    kind = TradeErrorKind.OFFER_EXPIRED

    def __init__(self, offer_id: str) -> None:
        self.offer_id = offer_id
        super().__init__(3002, f"Trade offer has expired: {offer_id}", 410)


class OfferNotActiveError(AppError):
    kind = TradeErrorKind.OFFER_NOT_ACTIVE

    def __init__(self, offer_id: str, status: str | None = None) -> None:
        self.offer_id = offer_id
        self.status = status
        detail = f" (status {status})" if status else ""
        super().__init__(3003, f"Trade offer is no longer available: {offer_id}{detail}", 409)


class CannotAcceptOwnOfferError(AppError):
    kind = TradeErrorKind.CANNOT_ACCEPT_OWN_OFFER

    def __init__(self) -> None:
        super().__init__(3004, "You cannot accept your own offer", 422)


class NotOfferOwnerError(AppError):
    kind = TradeErrorKind.NOT_OFFER_OWNER

    def __init__(self, detail: str = "You can only manage your own offers") -> None:
        super().__init__(3005, detail, 403)


class InvalidExpiryError(AppError):
    kind = TradeErrorKind.INVALID_EXPIRY

    def __init__(self, hours: int, allowed: list[int]) -> None:
        self.hours = hours
        self.allowed = allowed
        super().__init__(
            3006,
            f"Unsupported expiry of {hours}h, choose one of {sorted(allowed)}",
            422,
        )


# --- 4xxx: Trade history / ratings ---

class TradeHistoryNotFoundError(AppError):
    kind = TradeErrorKind.HISTORY_NOT_FOUND

    def __init__(self, history_id: str) -> None:
        self.history_id = history_id
        super().__init__(4001, f"Trade record not found: {history_id}", 404)


class AlreadyRatedError(AppError):
    kind = TradeErrorKind.ALREADY_RATED

    def __init__(self) -> None:
        super().__init__(4002, "You have already rated this trade", 409)


class InvalidRatingError(AppError):
    kind = TradeErrorKind.INVALID_RATING

    def __init__(self, rating: object) -> None:
        self.rating = rating
        super().__init__(4003, f"Rating must be between 1 and 5, got {rating!r}", 422)


# --- 9xxx: System ---

class InternalError(AppError):
    """A storage invariant that should hold did not (e.g. releasing more than reserved)."""

    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9001, detail, 500)


class UnknownError(AppError):
    kind = TradeErrorKind.UNKNOWN

    def __init__(self, cause: BaseException | None = None) -> None:
        self.cause = cause
        detail = f": {type(cause).__name__}" if cause is not None else ""
        super().__init__(9002, f"Unexpected error{detail}", 500)


class StorageError(AppError):
    """Transient failure of the backing store. The only retryable kind."""

    kind = TradeErrorKind.STORAGE
    retryable = True

    def __init__(self, cause: BaseException | None = None, operation: str = "") -> None:
        self.cause = cause
        self.operation = operation
        where = f" during {operation}" if operation else ""
        super().__init__(9003, f"Storage temporarily unavailable{where}, please retry", 503)
