"""Realtime fanout of queue events over Redis pub/sub.

The engine calls ``emit`` after each mutation; delivery is fire-and-forget.
The API's server-sent-events endpoint subscribes to the same channel and
relays whatever arrives to browsers watching a location.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

import redis

from models import utcnow

logger = logging.getLogger(__name__)


def updates_channel(location_id: str) -> str:
    return f"queue:{location_id}:updates"


def _default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class QueueFanout:
    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    def emit(self, location_id: str, payload: Dict[str, Any]) -> None:
        message = {"locationId": location_id, "timestamp": utcnow().isoformat(), **payload}
        try:
            self.client.publish(updates_channel(location_id), json.dumps(message, default=_default))
        except redis.RedisError as e:
            logger.warning(f"Redis publish error for location {location_id}: {e}")

    def listen(self, location_id: str, timeout: float = 5.0) -> Iterator[Optional[str]]:
        """Yield raw event strings; ``None`` when ``timeout`` passes with nothing."""
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(updates_channel(location_id))
        try:
            while True:
                message = pubsub.get_message(timeout=timeout)
                if message and message["type"] == "message":
                    yield message["data"]
                else:
                    yield None
        finally:
            pubsub.close()
