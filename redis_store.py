"""Redis client wrapper and the per-location live queue index.

The live index is the source of truth for *order*: a Redis list of entry
ids per location plus two counters (how many people have been served, and
the ticket counter used by ``ticket_numbers``).  A small hash per entry is
cached alongside it with a TTL; it is convenient for lookups but never
authoritative.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import redis

logger = logging.getLogger(__name__)


def create_redis(url: str, socket_timeout: Optional[float] = None) -> redis.Redis:
    """Build a client on its own connection pool.  Does not connect yet."""
    return redis.from_url(url, decode_responses=True, socket_timeout=socket_timeout)


def ping(client: redis.Redis) -> bool:
    try:
        return bool(client.ping())
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False


# ===== KEY HELPERS =====

def queue_list_key(location_id: str) -> str:
    return f"queue:{location_id}:list"


def queue_serving_key(location_id: str) -> str:
    return f"queue:{location_id}:serving"


def queue_counter_key(location_id: str) -> str:
    return f"queue:{location_id}:counter"


def queue_prefix_key(location_id: str) -> str:
    return f"queue:{location_id}:prefix"


def queue_entry_key(entry_id: str, location_id: str) -> str:
    return f"queue:entry:{entry_id}:{location_id}"


class LiveQueueIndex:
    """Ordered list of waiting entry ids and the serving counter, per location."""

    def __init__(self, client: redis.Redis, entry_ttl_seconds: int = 86400) -> None:
        self.client = client
        self.entry_ttl_seconds = entry_ttl_seconds

    # -------------------- ordered list --------------------

    def length(self, location_id: str) -> int:
        return int(self.client.llen(queue_list_key(location_id)))

    def append(self, location_id: str, entry_id: str) -> int:
        """Add to the tail; returns the new length."""
        return int(self.client.rpush(queue_list_key(location_id), entry_id))

    def pop_head(self, location_id: str) -> Optional[str]:
        return self.client.lpop(queue_list_key(location_id))

    def remove(self, location_id: str, entry_id: str) -> int:
        """Remove one occurrence of ``entry_id``; returns how many were removed."""
        return int(self.client.lrem(queue_list_key(location_id), 1, entry_id))

    def ids(self, location_id: str, limit: Optional[int] = None) -> List[str]:
        if limit is not None and limit <= 0:
            return []
        stop = -1 if limit is None else limit - 1
        return list(self.client.lrange(queue_list_key(location_id), 0, stop))

    def position_of(self, location_id: str, entry_id: str) -> int:
        """1-based live position, or 0 when the id is not in the list."""
        ids = self.ids(location_id)
        try:
            return ids.index(entry_id) + 1
        except ValueError:
            return 0

    # -------------------- serving counter --------------------

    def serving(self, location_id: str) -> int:
        return int(self.client.get(queue_serving_key(location_id)) or 0)

    def advance_serving(self, location_id: str) -> int:
        return int(self.client.incr(queue_serving_key(location_id)))

    # -------------------- entry cache --------------------

    def cache_entry(self, location_id: str, entry: Dict[str, Any]) -> None:
        key = queue_entry_key(entry["id"], location_id)
        mapping = {k: "" if v is None else str(v) for k, v in entry.items()}
        pipe = self.client.pipeline()
        pipe.hset(key, mapping=mapping)
        pipe.expire(key, self.entry_ttl_seconds)
        pipe.execute()

    def drop_entry(self, location_id: str, entry_id: str) -> None:
        self.client.delete(queue_entry_key(entry_id, location_id))

    # -------------------- bulk --------------------

    def clear(self, location_id: str) -> int:
        """Delete the list and every cached entry, reset the serving counter.

        Returns how many ids were in the list.
        """
        ids = self.ids(location_id)
        pipe = self.client.pipeline()
        pipe.delete(queue_list_key(location_id))
        for entry_id in ids:
            pipe.delete(queue_entry_key(entry_id, location_id))
        pipe.set(queue_serving_key(location_id), 0)
        pipe.execute()
        return len(ids)
