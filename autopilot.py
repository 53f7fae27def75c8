"""Per-location autopilot: call "serve next" on a fixed interval.

Each active location gets one daemon thread.  The registry is a plain
process-local dict, so two server replicas would each run their own
autopilot for the same location.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List

if TYPE_CHECKING:
    from redis_store import LiveQueueIndex
    from services import QueueService

logger = logging.getLogger(__name__)


@dataclass
class _AutopilotTask:
    location_id: str
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None


class AutopilotScheduler:
    def __init__(self, service: "QueueService", index: "LiveQueueIndex", interval: float = 3.0) -> None:
        self.service = service
        self.index = index
        self.interval = interval
        self._lock = threading.Lock()
        self._tasks: Dict[str, _AutopilotTask] = {}

    def start(self, location_id: str) -> bool:
        with self._lock:
            if location_id in self._tasks:
                logger.info(f"[Autopilot] Already running for location {location_id}")
                return False
            task = _AutopilotTask(location_id)
            task.thread = threading.Thread(
                target=self._run,
                args=(task,),
                name=f"autopilot-{location_id}",
                daemon=True,
            )
            self._tasks[location_id] = task
        task.thread.start()
        logger.info(f"[Autopilot] Started for location {location_id}")
        return True

    def stop(self, location_id: str, task: _AutopilotTask | None = None) -> bool:
        """Stop the location's autopilot.

        With ``task`` given, only that registration is removed; a newer task
        started for the same location is left running.
        """
        owner = task
        with self._lock:
            current = self._tasks.get(location_id)
            if current is not None and (owner is None or current is owner):
                task = self._tasks.pop(location_id)
            else:
                task = None
        if task is None:
            if owner is not None:
                owner.stop_event.set()
            logger.info(f"[Autopilot] Not running for location {location_id}")
            return False
        task.stop_event.set()
        # A tick may stop its own task; never join the current thread.
        if task.thread is not None and task.thread is not threading.current_thread():
            task.thread.join(timeout=self.interval + 1.0)
        logger.info(f"[Autopilot] Stopped for location {location_id}")
        return True

    def is_active(self, location_id: str) -> bool:
        return location_id in self._tasks

    def active_locations(self) -> List[str]:
        with self._lock:
            return sorted(self._tasks)

    def stop_all(self) -> None:
        for location_id in self.active_locations():
            self.stop(location_id)

    def _run(self, task: _AutopilotTask) -> None:
        while not task.stop_event.wait(self.interval):
            self.tick(task.location_id, task)

    def tick(self, location_id: str, task: _AutopilotTask | None = None) -> None:
        """One autopilot step.  Never raises."""
        try:
            if self.index.length(location_id) == 0:
                logger.info(f"[Autopilot] Queue empty for location {location_id}, stopping autopilot")
                self.stop(location_id, task)
                return

            result = self.service.serve_next(location_id)
            if result.success:
                logger.info(f"[Autopilot] Processed next customer for location {location_id}")
                return

            logger.info(f"[Autopilot] No customer to process for location {location_id}: {result.message}")
            if self.index.length(location_id) == 0:
                logger.info(
                    f"[Autopilot] Queue empty after processing, stopping autopilot for location {location_id}"
                )
                self.stop(location_id, task)
        except Exception:
            logger.exception(f"[Autopilot] Error processing queue for location {location_id}")
