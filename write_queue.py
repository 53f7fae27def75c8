"""Deferred ledger writes.

Completing or leaving an entry can be recorded as a small job on one shared
Redis list instead of hitting the database on the request path.  The batch
worker (``write_worker``) drains the list.  Popping a job removes it for
good, so a crash between pop and apply loses that job: delivery is
at-most-once on purpose.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List

import redis

from models import QueueEntryStatus, utcnow

logger = logging.getLogger(__name__)

WRITE_QUEUE_KEY = "db-write-queue"


class WriteJobType(str, Enum):
    complete = "COMPLETE_ENTRY"
    leave = "LEAVE_ENTRY"


@dataclass(frozen=True)
class WriteJob:
    type: WriteJobType
    entry_id: str
    location_id: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def complete(cls, entry_id: str, location_id: str) -> "WriteJob":
        payload = {"status": QueueEntryStatus.completed.value, "completedAt": utcnow().isoformat()}
        return cls(WriteJobType.complete, entry_id, location_id, payload)

    @classmethod
    def leave(cls, entry_id: str, location_id: str) -> "WriteJob":
        payload = {"status": QueueEntryStatus.left.value, "leftAt": utcnow().isoformat()}
        return cls(WriteJobType.leave, entry_id, location_id, payload)

    def to_json(self) -> str:
        data = asdict(self)
        data["type"] = self.type.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "WriteJob":
        data = json.loads(raw)
        return cls(
            type=WriteJobType(data["type"]),
            entry_id=data["entry_id"],
            location_id=data["location_id"],
            payload=data.get("payload") or {},
        )


class WriteBehindQueue:
    def __init__(self, client: redis.Redis, key: str = WRITE_QUEUE_KEY) -> None:
        self.client = client
        self.key = key

    def enqueue(self, job: WriteJob) -> None:
        self.client.rpush(self.key, job.to_json())

    def pop_batch(self, count: int) -> List[WriteJob]:
        """Pop up to ``count`` jobs in one command."""
        raw_jobs = self.client.lpop(self.key, count) or []
        jobs: List[WriteJob] = []
        for raw in raw_jobs:
            try:
                jobs.append(WriteJob.from_json(raw))
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"Dropping malformed write job {raw!r}: {e}")
        return jobs

    def pending(self) -> int:
        return int(self.client.llen(self.key))
