"""Queue coordination engine.

Each location's line lives in two places: the live index in Redis decides
*order* (who is where right now) and the ticket ledger decides *status and
history*.  The two are updated one after the other without a shared
transaction.  Two windows are accepted rather than locked away:

* two joins racing at the capacity boundary can both pass the check;
* a crash between popping the head and writing ``completed`` leaves the
  ledger row ``waiting`` while the list has already moved on.

Reads treat a waiting row whose id is no longer in the list as gone, so
both cases heal on the next read.

Every public operation returns a ``ServiceResult``; nothing raises past
this module.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from database import LocationDirectory, TicketLedger
from fanout import QueueFanout
from models import Location, QueueEntry, QueueEntryStatus, utcnow
from redis_store import LiveQueueIndex, ping
from results import QueueError, ResultStatus, ServiceResult, service_boundary
from ticket_numbers import TicketNumberGenerator
from write_queue import WriteBehindQueue, WriteJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Participant:
    full_name: str
    phone_number: Optional[str] = None
    user_id: Optional[str] = None


def _list_item(entry: QueueEntry, position: int) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "id": entry.id,
        "queueNumber": entry.queue_number,
        "fullName": entry.full_name,
        "position": position,
    }
    if entry.phone_number:
        item["phoneNumber"] = entry.phone_number
    return item


class QueueService:
    def __init__(
        self,
        ledger: TicketLedger,
        locations: LocationDirectory,
        index: LiveQueueIndex,
        tickets: TicketNumberGenerator,
        fanout: QueueFanout,
        write_queue: Optional[WriteBehindQueue] = None,
        write_behind: bool = False,
        default_list_limit: int = 50,
    ) -> None:
        if write_behind and write_queue is None:
            raise ValueError("write_behind requires a write_queue")
        self.ledger = ledger
        self.locations = locations
        self.index = index
        self.tickets = tickets
        self.fanout = fanout
        self.write_queue = write_queue
        self.write_behind = write_behind
        self.default_list_limit = default_list_limit

    # -------------------- helpers --------------------

    def _location(self, location_id: str) -> Location:
        location = self.locations.get(location_id)
        if location is None:
            raise QueueError(ResultStatus.not_found, "Location not found")
        return location

    def _waiting_in_line(self, location_id: str, identity: Optional[str]) -> Tuple[QueueEntry, int]:
        """The identity's waiting entry and its live position, or NOT_FOUND."""
        if not identity:
            raise QueueError(ResultStatus.validation, "Phone number is required")
        entry = self.ledger.find_waiting(location_id, identity)
        if entry is None:
            raise QueueError(ResultStatus.not_found, "You are not in the queue")
        position = self.index.position_of(location_id, entry.id)
        if position == 0:
            logger.warning(f"Entry {entry.id} is waiting in the ledger but not in the live queue of {location_id}")
            raise QueueError(ResultStatus.not_found, "You are not in the queue")
        return entry, position

    def _position_payload(self, entry: QueueEntry, position: int, location: Location) -> Dict[str, Any]:
        serving = self.index.serving(location.id)
        people_ahead = max(0, position - serving)
        return {
            "position": position,
            "peopleAhead": people_ahead,
            "queueNumber": entry.queue_number,
            "estimatedWaitMinutes": people_ahead * location.service_time_minutes,
        }

    def _admit(self, location: Location, participant: Participant, position: int) -> QueueEntry:
        queue_number = self.tickets.next(location.id, location.queue_prefix)
        entry = self.ledger.insert(
            QueueEntry(
                location_id=location.id,
                user_id=participant.user_id,
                phone_number=participant.phone_number,
                full_name=participant.full_name,
                queue_number=queue_number,
                position=position,
                status=QueueEntryStatus.waiting,
            )
        )
        queue_size = self.index.append(location.id, entry.id)
        self.index.cache_entry(
            location.id,
            {
                "id": entry.id,
                "queueNumber": entry.queue_number,
                "fullName": entry.full_name,
                "phoneNumber": entry.phone_number,
                "position": entry.position,
            },
        )
        self.fanout.emit(location.id, {"type": "joined", "entry": entry.to_wire(), "queueSize": queue_size})
        return entry

    def _record(self, entry: QueueEntry, status: QueueEntryStatus) -> None:
        """Move ``entry`` out of waiting, now or through the write-behind queue."""
        now = utcnow()
        if self.write_behind:
            job = WriteJob.complete if status == QueueEntryStatus.completed else WriteJob.leave
            self.write_queue.enqueue(job(entry.id, entry.location_id))
        else:
            self.ledger.mark([entry.id], status, at=now)
        entry.status = status
        entry.updated_at = now
        if status == QueueEntryStatus.completed:
            entry.completed_at = now
        else:
            entry.left_at = now

    def _queue_list(self, location_id: str, limit: Optional[int]) -> List[Dict[str, Any]]:
        ids = self.index.ids(location_id, limit or self.default_list_limit)
        rows = {row.id: row for row in self.ledger.find_waiting_by_ids(location_id, ids)}
        return [
            _list_item(rows[entry_id], position)
            for position, entry_id in enumerate(ids, start=1)
            if entry_id in rows
        ]

    # -------------------- joining --------------------

    @service_boundary("Failed to join queue", logger)
    def join(
        self,
        location_id: str,
        full_name: str,
        phone_number: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ServiceResult:
        identity = phone_number or user_id
        if not identity:
            raise QueueError(ResultStatus.validation, "Phone number or user id is required")
        location = self._location(location_id)

        existing = self.ledger.find_waiting(location_id, identity)
        if existing is not None:
            position = self.index.position_of(location_id, existing.id)
            if position:
                return ServiceResult.ok(
                    "You are already in the queue",
                    existing.to_wire(position),
                    ResultStatus.already_member,
                )
            logger.warning(f"Ignoring stale waiting entry {existing.id} for {identity} at {location_id}")

        # Check-then-act: concurrent joins at the boundary may both pass.
        queue_size = self.index.length(location_id)
        if queue_size >= location.max_queue_capacity:
            raise QueueError(ResultStatus.validation, "Queue is full")

        entry = self._admit(location, Participant(full_name, phone_number, user_id), queue_size + 1)
        return ServiceResult.ok("Successfully joined queue", entry.to_wire(), ResultStatus.created)

    @service_boundary("Failed to join queue", logger)
    def join_many(self, location_id: str, participants: Sequence[Participant]) -> ServiceResult:
        """Join a batch in order.  Not atomic: a mid-batch failure keeps the earlier joins."""
        if not participants:
            raise QueueError(ResultStatus.validation, "At least one participant is required")
        if any(not p.phone_number for p in participants):
            raise QueueError(ResultStatus.validation, "Phone number is required for every participant")
        location = self._location(location_id)

        phones = [p.phone_number for p in participants]
        duplicates = [phone for phone, seen in Counter(phones).items() if seen > 1]
        if duplicates:
            raise QueueError(
                ResultStatus.validation,
                f"Duplicate phone numbers in request: {', '.join(duplicates)}",
                {"duplicates": duplicates},
            )

        # Same rule as join: a waiting row that left the live list is stale.
        live = set(self.index.ids(location_id))
        waiting = {
            phone
            for phone, entry_id in self.ledger.find_waiting_phones(location_id, phones)
            if entry_id in live
        }
        conflicts = [phone for phone in phones if phone in waiting]
        if conflicts:
            raise QueueError(
                ResultStatus.validation,
                f"Already in queue: {', '.join(conflicts)}",
                {"conflicts": conflicts},
            )

        queue_size = self.index.length(location_id)
        available = location.max_queue_capacity - queue_size
        if len(participants) > available:
            raise QueueError(
                ResultStatus.validation,
                f"Queue capacity exceeded: {max(available, 0)} spots left, {len(participants)} requested",
            )

        joined: List[Dict[str, Any]] = []
        for offset, participant in enumerate(participants, start=1):
            try:
                entry = self._admit(location, participant, queue_size + offset)
            except Exception:
                logger.exception(f"Batch join failed after {len(joined)} of {len(participants)} at {location_id}")
                raise QueueError(
                    ResultStatus.internal,
                    f"Failed to join queue after {len(joined)} of {len(participants)} participants",
                    {"joined": joined},
                )
            joined.append(entry.to_wire())
        return ServiceResult.ok(f"Successfully joined {len(joined)} participants", joined, ResultStatus.created)

    # -------------------- reading --------------------

    @service_boundary("Failed to get position", logger)
    def get_position(self, identity: str, location_id: str) -> ServiceResult:
        location = self._location(location_id)
        entry, position = self._waiting_in_line(location_id, identity)
        return ServiceResult.ok("Position retrieved", self._position_payload(entry, position, location))

    @service_boundary("Failed to get queue status", logger)
    def get_status(self, location_id: str) -> ServiceResult:
        location = self._location(location_id)
        queue_size = self.index.length(location_id)
        return ServiceResult.ok(
            "Queue status retrieved",
            {
                "currentServing": self.index.serving(location_id),
                "queueSize": queue_size,
                "estimatedWaitMinutes": queue_size * location.service_time_minutes,
                "isFull": queue_size >= location.max_queue_capacity,
            },
        )

    @service_boundary("Failed to get queue list", logger)
    def list(self, location_id: str, limit: Optional[int] = None) -> ServiceResult:
        return ServiceResult.ok("Queue list retrieved", self._queue_list(location_id, limit))

    @service_boundary("Failed to get active queues", logger)
    def active_queues(self, identity: str) -> ServiceResult:
        if not identity:
            raise QueueError(ResultStatus.validation, "Phone number is required")
        entries = self.ledger.find_waiting_everywhere(identity)
        locations = self.locations.get_many(entry.location_id for entry in entries)

        items: List[Dict[str, Any]] = []
        for entry in entries:
            location = locations.get(entry.location_id)
            if location is None:
                continue
            position = self.index.position_of(location.id, entry.id)
            if position == 0:
                continue
            item = entry.to_wire(position)
            item.update(self._position_payload(entry, position, location))
            item["locationName"] = location.name
            item["serviceTimeMinutes"] = location.service_time_minutes
            item["joinedAt"] = entry.joined_at.isoformat()
            items.append(item)
        return ServiceResult.ok("Active queues retrieved", items)

    @service_boundary("Failed to get dashboard", logger)
    def dashboard(self, location_id: str) -> ServiceResult:
        self._location(location_id)
        start = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        completed = self.ledger.completed_between(location_id, start, start + timedelta(days=1))
        minutes = [(done - joined).total_seconds() / 60 for joined, done in completed]
        avg = round(sum(minutes) / len(minutes), 1) if minutes else 0
        return ServiceResult.ok(
            "Dashboard retrieved",
            {
                "currentServing": self.index.serving(location_id),
                "totalWaiting": self.index.length(location_id),
                "servedToday": len(completed),
                "avgProcessingTimeMinutes": avg,
                "queueList": self._queue_list(location_id, None),
            },
        )

    # -------------------- advancing --------------------

    @service_boundary("Failed to serve next customer", logger)
    def serve_next(self, location_id: str) -> ServiceResult:
        self._location(location_id)
        entry_id = self.index.pop_head(location_id)
        if entry_id is None:
            raise QueueError(ResultStatus.not_found, "No one in queue")

        entry = self.ledger.get(entry_id)
        if entry is not None:
            self._record(entry, QueueEntryStatus.completed)
        else:
            logger.warning(f"Served id {entry_id} at {location_id} has no ledger row")
        self.index.drop_entry(location_id, entry_id)
        serving_number = self.index.advance_serving(location_id)

        wire = entry.to_wire() if entry is not None else None
        self.fanout.emit(location_id, {"type": "served", "servingNumber": serving_number, "entry": wire})
        return ServiceResult.ok("Next customer served", {"servingNumber": serving_number, "entry": wire})

    @service_boundary("Failed to leave queue", logger)
    def leave(self, identity: str, location_id: str) -> ServiceResult:
        if not identity:
            raise QueueError(ResultStatus.validation, "Phone number is required")
        entry = self.ledger.find_waiting(location_id, identity)
        if entry is None or self.index.remove(location_id, entry.id) == 0:
            raise QueueError(ResultStatus.not_found, "You are not in the queue")

        self.index.drop_entry(location_id, entry.id)
        self._record(entry, QueueEntryStatus.left)
        self.fanout.emit(
            location_id,
            {"type": "left", "entry": entry.to_wire(), "queueSize": self.index.length(location_id)},
        )
        return ServiceResult.ok("Successfully left queue")

    @service_boundary("Failed to empty queue", logger)
    def empty(self, location_id: str) -> ServiceResult:
        self._location(location_id)
        cleared = self.ledger.leave_all_waiting(location_id)
        removed = self.index.clear(location_id)
        if removed != cleared:
            logger.info(f"Emptied {location_id}: {cleared} ledger rows, {removed} live ids")
        self.fanout.emit(location_id, {"type": "emptied", "cleared": cleared})
        return ServiceResult.ok("Queue emptied", {"cleared": cleared})

    # -------------------- ops --------------------

    def health(self) -> ServiceResult:
        checks = {"redis": ping(self.index.client), "database": self.ledger.ping()}
        if all(checks.values()):
            return ServiceResult.ok("healthy", checks)
        return ServiceResult.failure("unhealthy", ResultStatus.internal, checks)
