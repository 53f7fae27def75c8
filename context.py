"""Startup context: builds and owns every long-lived component.

Nothing in the project keeps a module-level client or service; the API and
the standalone worker each call ``build_context`` once and pass the pieces
where they are needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import redis
from sqlalchemy.engine import Engine

from autopilot import AutopilotScheduler
from config import Settings
from database import LocationDirectory, TicketLedger, create_ledger_engine, init_db
from fanout import QueueFanout
from redis_store import LiveQueueIndex, create_redis
from services import QueueService
from ticket_numbers import TicketNumberGenerator
from write_queue import WriteBehindQueue
from write_worker import BatchWriteWorker

logger = logging.getLogger(__name__)


@dataclass
class QueueContext:
    settings: Settings
    engine: Engine
    redis: redis.Redis
    ledger: TicketLedger
    locations: LocationDirectory
    index: LiveQueueIndex
    fanout: QueueFanout
    write_queue: WriteBehindQueue
    write_worker: BatchWriteWorker
    service: QueueService
    autopilot: AutopilotScheduler

    def start(self) -> None:
        """Start background work owned by the API process."""
        if self.settings.write_worker_embedded:
            self.write_worker.start()

    def close(self) -> None:
        self.autopilot.stop_all()
        self.write_worker.stop()
        self.redis.close()
        self.engine.dispose()
        logger.info("Queue context closed")


def build_context(
    settings: Optional[Settings] = None,
    redis_client: Optional[redis.Redis] = None,
    engine: Optional[Engine] = None,
) -> QueueContext:
    """Wire everything together.  Tests pass their own client and engine."""
    settings = settings or Settings.from_env()
    engine = engine or create_ledger_engine(settings.database_url)
    init_db(engine)
    client = redis_client or create_redis(settings.redis_url, settings.redis_socket_timeout)

    ledger = TicketLedger(engine)
    locations = LocationDirectory(engine)
    index = LiveQueueIndex(client, entry_ttl_seconds=settings.entry_cache_ttl_seconds)
    fanout = QueueFanout(client)
    write_queue = WriteBehindQueue(client)
    write_worker = BatchWriteWorker(
        write_queue,
        ledger,
        interval=settings.write_worker_interval,
        batch_size=settings.write_worker_batch_size,
    )
    service = QueueService(
        ledger=ledger,
        locations=locations,
        index=index,
        tickets=TicketNumberGenerator(client),
        fanout=fanout,
        write_queue=write_queue,
        write_behind=settings.write_behind_enabled,
        default_list_limit=settings.default_list_limit,
    )
    autopilot = AutopilotScheduler(service, index, interval=settings.autopilot_interval)
    return QueueContext(
        settings=settings,
        engine=engine,
        redis=client,
        ledger=ledger,
        locations=locations,
        index=index,
        fanout=fanout,
        write_queue=write_queue,
        write_worker=write_worker,
        service=service,
        autopilot=autopilot,
    )
