"""Database models for the ticket ledger.

We use SQLModel to define the schema.  ``QueueEntry`` rows are the durable
history of every ticket ever issued; they are never deleted, only moved
from ``waiting`` to ``completed`` or ``left``.  ``Location`` holds the
per-location queue configuration the engine reads (ticket prefix, capacity,
average service time).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp; newer SQLModel releases reject naive values."""
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return str(uuid.uuid4())


class QueueEntryStatus(str, Enum):
    """Possible statuses for a queue entry."""

    waiting = "waiting"
    completed = "completed"
    left = "left"


class Location(SQLModel, table=True):
    __tablename__ = "locations"

    id: str = Field(default_factory=generate_id, primary_key=True)
    name: str
    queue_prefix: str = Field(default="A", max_length=10)
    max_queue_capacity: int = Field(default=100)
    service_time_minutes: int = Field(default=1)


class QueueEntry(SQLModel, table=True):
    __tablename__ = "queue_entries"

    id: str = Field(default_factory=generate_id, primary_key=True)
    location_id: str = Field(index=True)
    user_id: Optional[str] = Field(default=None, index=True)
    phone_number: Optional[str] = Field(default=None, index=True)
    full_name: str
    queue_number: str  # e.g. A-123
    position: int  # snapshot at join time; live order lives in Redis
    status: QueueEntryStatus = Field(default=QueueEntryStatus.waiting, index=True)
    joined_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    left_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

    def to_wire(self, position: Optional[int] = None) -> Dict[str, Any]:
        """Wire shape shared by every API response that returns an entry."""
        data: Dict[str, Any] = {
            "id": self.id,
            "locationId": self.location_id,
            "queueNumber": self.queue_number,
            "fullName": self.full_name,
            "position": self.position if position is None else position,
            "status": self.status.value,
        }
        if self.phone_number:
            data["phoneNumber"] = self.phone_number
        return data
