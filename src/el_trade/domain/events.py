"""Offer event publishing Protocol.

Events are notifications only: they are published after the transaction
commits and are never read back by the engine. A publisher must not raise.
"""

from typing import Protocol

from src.el_trade.domain.models import OfferEvent


class OfferEventPublisherProtocol(Protocol):
    async def publish(self, event: OfferEvent) -> None: ...


class NullOfferEventPublisher:
    """Used when TRADE_EVENTS_ENABLED is off."""

    async def publish(self, event: OfferEvent) -> None:
        return None
