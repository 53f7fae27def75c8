#!/usr/bin/env python3
"""
Ledger Write-Behind Worker

Drains the deferred write list (see ``write_queue``) and applies the jobs
to the ledger in batches: one bulk UPDATE per job type per tick.  The API
process runs one of these on a background thread unless
WRITE_WORKER_EMBEDDED is off, in which case run this script as the single
process that drains the list.

Usage:
    python write_worker.py

Environment Variables:
    DATABASE_URL - ledger database URL
    REDIS_URL - Redis connection URL
    WRITE_WORKER_INTERVAL - seconds between ticks (default 2)
    WRITE_WORKER_BATCH_SIZE - jobs per tick (default 10)
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from database import TicketLedger
from models import QueueEntryStatus, utcnow
from write_queue import WriteBehindQueue, WriteJobType

logger = logging.getLogger(__name__)

_STATUS_FOR = {
    WriteJobType.complete: QueueEntryStatus.completed,
    WriteJobType.leave: QueueEntryStatus.left,
}


class BatchWriteWorker:
    def __init__(
        self,
        queue: WriteBehindQueue,
        ledger: TicketLedger,
        interval: float = 2.0,
        batch_size: int = 10,
    ) -> None:
        self.queue = queue
        self.ledger = ledger
        self.interval = interval
        self.batch_size = batch_size
        self._in_flight = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        if self.is_running:
            logger.info("[DB Write Worker] Already running")
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="db-write-worker", daemon=True)
        self._thread.start()
        logger.info("[DB Write Worker] Starting background worker...")
        return True

    def stop(self, timeout: float = 5.0) -> None:
        if not self.is_running:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("[DB Write Worker] Stopped")

    def _loop(self) -> None:
        # First tick runs immediately, then on the interval.
        while True:
            try:
                self.process_jobs()
            except Exception:
                logger.exception("[DB Write Worker] Error in process loop")
            if self._stop_event.wait(self.interval):
                break

    def process_jobs(self) -> int:
        """Apply one batch.  Returns how many jobs were popped.

        A tick that starts while another is still applying returns 0
        without touching the list.
        """
        if not self._in_flight.acquire(blocking=False):
            logger.debug("[DB Write Worker] Previous batch still in flight, skipping tick")
            return 0
        try:
            jobs = self.queue.pop_batch(self.batch_size)
            if not jobs:
                return 0
            grouped: Dict[WriteJobType, List[str]] = {}
            for job in jobs:
                grouped.setdefault(job.type, []).append(job.entry_id)

            counts = {}
            now = utcnow()
            for job_type, entry_ids in grouped.items():
                counts[job_type] = self.ledger.mark(
                    entry_ids, _STATUS_FOR[job_type], at=now, only_waiting=True
                )
            logger.info(
                f"[DB Write Worker] Processed {len(jobs)} jobs "
                f"({len(grouped.get(WriteJobType.complete, []))} completed, "
                f"{len(grouped.get(WriteJobType.leave, []))} left, "
                f"{sum(counts.values())} rows updated)"
            )
            return len(jobs)
        finally:
            self._in_flight.release()


def main() -> None:
    """Main entry point."""
    from config import Settings, configure_logging
    from context import build_context

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    context = build_context(settings)
    worker = context.write_worker
    logger.info("Ledger write-behind worker starting")
    try:
        worker.start()
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    finally:
        worker.stop()
        context.close()


if __name__ == "__main__":
    main()
