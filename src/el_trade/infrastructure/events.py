"""Redis Pub/Sub offer event publisher.

Channels:
  {prefix}:offers          every offer event (listing screens refresh on it)
  {prefix}:user:{user_id}  events that concern that player (owner / counterparty)

Publishing is best effort. The trade is already committed when this runs,
so a Redis failure is logged and swallowed rather than failing the request.
"""

import json
import logging
from collections.abc import Awaitable, Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import settings
from src.el_common.redis_client import get_redis
from src.el_trade.domain.models import OfferEvent

logger = logging.getLogger(__name__)


class RedisOfferEventPublisher:
    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[aioredis.Redis]] = get_redis,
        channel_prefix: str | None = None,
    ) -> None:
        self._redis_factory = redis_factory
        self._prefix = channel_prefix or settings.TRADE_EVENTS_CHANNEL_PREFIX

    def channels_for(self, event: OfferEvent) -> list[str]:
        channels = [f"{self._prefix}:offers"]
        for user_id in (event.owner_id, event.counterparty_id):
            channel = f"{self._prefix}:user:{user_id}"
            if user_id and channel not in channels:
                channels.append(channel)
        return channels

    async def publish(self, event: OfferEvent) -> None:
        payload = json.dumps(event.to_payload())
        try:
            client = await self._redis_factory()
            for channel in self.channels_for(event):
                await client.publish(channel, payload)
        except (RedisError, OSError) as exc:
            logger.warning(
                "Offer event publish failed: event=%s offer=%s error=%r",
                event.event_type.value,
                event.offer_id,
                exc,
            )
