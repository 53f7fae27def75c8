"""Human-readable ticket numbers: ``A-001`` ... ``A-999``, ``B-001`` ...

Letters advance through a bijective base-26 sequence (A..Z, AA..AZ, BA..)
so no letter stands for zero.  The numeric part cycles 1..999 per location
and the letters rotate exactly when it would pass 999.
"""

from __future__ import annotations

import logging
from typing import Tuple

import redis

from redis_store import queue_counter_key, queue_prefix_key

logger = logging.getLogger(__name__)

MAX_TICKET = 999


def alphabet_index(letters: str) -> int:
    """``A`` -> 0, ``Z`` -> 25, ``AA`` -> 26, ``AZ`` -> 51, ``BA`` -> 52."""
    if not letters or not letters.isalpha() or not letters.isascii():
        raise ValueError(f"invalid ticket prefix: {letters!r}")
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - 64)
    return index - 1


def alphabet_from_index(index: int) -> str:
    if index < 0:
        raise ValueError(f"alphabet index must be >= 0, got {index}")
    result = ""
    index += 1
    while index > 0:
        index -= 1
        result = chr(65 + index % 26) + result
        index //= 26
    return result


def advance(letters: str, counter: int) -> Tuple[str, int]:
    """Apply rotation to an already-incremented counter.

    Returns the (letters, counter) pair to persist and print.
    """
    if counter > MAX_TICKET:
        rotation = (counter - 1) // MAX_TICKET
        letters = alphabet_from_index(alphabet_index(letters) + rotation)
        counter = ((counter - 1) % MAX_TICKET) + 1
    return letters, counter


def format_ticket(letters: str, counter: int) -> str:
    return f"{letters}-{counter:03d}"


class TicketNumberGenerator:
    """Issues ticket numbers from counters kept next to the live queue."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    def next(self, location_id: str, default_prefix: str = "A") -> str:
        counter_key = queue_counter_key(location_id)
        prefix_key = queue_prefix_key(location_id)

        def _issue(pipe: redis.client.Pipeline) -> str:
            letters = pipe.get(prefix_key) or (default_prefix or "A").upper()
            counter = int(pipe.get(counter_key) or 0) + 1
            letters, counter = advance(letters, counter)
            pipe.multi()
            pipe.set(counter_key, counter)
            pipe.set(prefix_key, letters)
            return format_ticket(letters, counter)

        # Optimistic: retried by redis-py if another join touched the counters.
        ticket = self.client.transaction(_issue, counter_key, prefix_key, value_from_callable=True)
        logger.debug(f"Issued ticket {ticket} for location {location_id}")
        return ticket
