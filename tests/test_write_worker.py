import time

import pytest

from models import Location, QueueEntryStatus
from results import ResultStatus
from services import Participant
from write_queue import WRITE_QUEUE_KEY, WriteJob, WriteJobType


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def deferred_location(deferred_context):
    return deferred_context.locations.add(Location(name="Bakery", queue_prefix="B", max_queue_capacity=10))


def test_job_json_round_trip():
    job = WriteJob.leave("entry-1", "loc-1")
    parsed = WriteJob.from_json(job.to_json())
    assert parsed == job
    assert parsed.type == WriteJobType.leave
    assert parsed.payload["status"] == "left"


def test_deferred_leave_is_applied_by_worker(deferred_context, deferred_location):
    service = deferred_context.service
    ledger = deferred_context.ledger
    joined = service.join(deferred_location.id, "Alice", phone_number="555-0001")

    assert service.leave("555-0001", deferred_location.id).success
    # The list moved already; the ledger catches up on the next batch.
    assert ledger.get(joined.data["id"]).status == QueueEntryStatus.waiting
    assert deferred_context.write_queue.pending() == 1
    assert service.get_position("555-0001", deferred_location.id).status == ResultStatus.not_found
    assert service.leave("555-0001", deferred_location.id).status == ResultStatus.not_found

    assert deferred_context.write_worker.process_jobs() == 1
    row = ledger.get(joined.data["id"])
    assert row.status == QueueEntryStatus.left
    assert row.left_at is not None


def test_deferred_serve_next(deferred_context, deferred_location):
    service = deferred_context.service
    joined = service.join(deferred_location.id, "Alice", phone_number="555-0001")

    served = service.serve_next(deferred_location.id)
    assert served.data["servingNumber"] == 1
    assert served.data["entry"]["status"] == "completed"

    deferred_context.write_worker.process_jobs()
    row = deferred_context.ledger.get(joined.data["id"])
    assert row.status == QueueEntryStatus.completed
    assert row.completed_at is not None


def test_batch_join_after_unflushed_serve(deferred_context, deferred_location):
    service = deferred_context.service
    service.join(deferred_location.id, "Alice", phone_number="555-0001")
    service.serve_next(deferred_location.id)

    result = service.join_many(
        deferred_location.id,
        [Participant("Alice", "555-0001"), Participant("Bob", "555-0002")],
    )
    assert result.status == ResultStatus.created
    assert [e["queueNumber"] for e in result.data] == ["B-002", "B-003"]


def test_batches_are_capped_and_grouped(deferred_context, deferred_location):
    service = deferred_context.service
    worker = deferred_context.write_worker
    worker.batch_size = 2
    ids = [service.join(deferred_location.id, f"P{i}", phone_number=f"555-000{i}").data["id"] for i in range(3)]
    service.serve_next(deferred_location.id)
    service.leave("555-0001", deferred_location.id)
    service.leave("555-0002", deferred_location.id)

    assert worker.process_jobs() == 2
    assert deferred_context.write_queue.pending() == 1
    assert worker.process_jobs() == 1
    assert worker.process_jobs() == 0

    statuses = [deferred_context.ledger.get(i).status for i in ids]
    assert statuses == [QueueEntryStatus.completed, QueueEntryStatus.left, QueueEntryStatus.left]


def test_jobs_never_rewrite_finished_entries(deferred_context, deferred_location):
    joined = deferred_context.service.join(deferred_location.id, "Alice", phone_number="555-0001")
    deferred_context.ledger.mark([joined.data["id"]], QueueEntryStatus.left)
    deferred_context.write_queue.enqueue(WriteJob.complete(joined.data["id"], deferred_location.id))

    deferred_context.write_worker.process_jobs()
    assert deferred_context.ledger.get(joined.data["id"]).status == QueueEntryStatus.left


def test_malformed_jobs_are_dropped(deferred_context, redis_client):
    redis_client.rpush(WRITE_QUEUE_KEY, "not json", '{"type": "BOGUS"}')
    assert deferred_context.write_queue.pop_batch(10) == []
    assert deferred_context.write_queue.pending() == 0


def test_overlapping_tick_is_skipped(deferred_context, deferred_location):
    deferred_context.write_queue.enqueue(WriteJob.leave("entry-1", deferred_location.id))
    worker = deferred_context.write_worker

    worker._in_flight.acquire()
    try:
        assert worker.process_jobs() == 0
        assert deferred_context.write_queue.pending() == 1
    finally:
        worker._in_flight.release()


def test_background_worker_drains_queue(deferred_context, deferred_location):
    service = deferred_context.service
    joined = service.join(deferred_location.id, "Alice", phone_number="555-0001")
    service.leave("555-0001", deferred_location.id)

    worker = deferred_context.write_worker
    assert worker.start() is True
    assert worker.start() is False
    assert wait_for(lambda: deferred_context.write_queue.pending() == 0)
    worker.stop()
    assert not worker.is_running
    assert deferred_context.ledger.get(joined.data["id"]).status == QueueEntryStatus.left
