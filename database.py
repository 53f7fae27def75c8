"""Ticket ledger and location directory on top of SQLModel.

Supports SQLite for local development and PostgreSQL (psycopg2) in
production; the URL scheme picks the driver.  Every method opens its own
short-lived session, so one ``TicketLedger`` is safely shared by all request
threads through the engine's connection pool.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import or_, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from models import Location, QueueEntry, QueueEntryStatus, utcnow

logger = logging.getLogger(__name__)


def create_ledger_engine(database_url: str, echo: bool = False) -> Engine:
    """Return an engine for the ledger database."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory SQLite only exists on one connection.
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Create tables if they do not exist."""
    SQLModel.metadata.create_all(engine)


def _identity_clause(identity: str):
    return or_(QueueEntry.phone_number == identity, QueueEntry.user_id == identity)


class LocationDirectory:
    """Read access to location settings.  ``add`` exists for seeding."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get(self, location_id: str) -> Optional[Location]:
        with Session(self.engine) as session:
            return session.get(Location, location_id)

    def get_many(self, location_ids: Iterable[str]) -> dict:
        ids = list(set(location_ids))
        if not ids:
            return {}
        with Session(self.engine) as session:
            rows = session.exec(select(Location).where(Location.id.in_(ids))).all()
            return {row.id: row for row in rows}

    def add(self, location: Location) -> Location:
        with Session(self.engine) as session:
            session.add(location)
            session.commit()
            session.refresh(location)
            return location


class TicketLedger:
    """Durable record of every queue entry."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def insert(self, entry: QueueEntry) -> QueueEntry:
        with Session(self.engine) as session:
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry

    def get(self, entry_id: str) -> Optional[QueueEntry]:
        with Session(self.engine) as session:
            return session.get(QueueEntry, entry_id)

    def find_waiting(self, location_id: str, identity: str) -> Optional[QueueEntry]:
        """Most recent waiting entry for ``identity`` (phone or user id) at a location."""
        statement = (
            select(QueueEntry)
            .where(
                QueueEntry.location_id == location_id,
                QueueEntry.status == QueueEntryStatus.waiting,
                _identity_clause(identity),
            )
            .order_by(QueueEntry.joined_at.desc())
        )
        with Session(self.engine) as session:
            return session.exec(statement).first()

    def find_waiting_everywhere(self, identity: str) -> List[QueueEntry]:
        statement = (
            select(QueueEntry)
            .where(QueueEntry.status == QueueEntryStatus.waiting, _identity_clause(identity))
            .order_by(QueueEntry.joined_at)
        )
        with Session(self.engine) as session:
            return list(session.exec(statement).all())

    def find_waiting_phones(self, location_id: str, phone_numbers: Sequence[str]) -> List[Tuple[str, str]]:
        """(phone_number, entry id) for each waiting row among ``phone_numbers``."""
        if not phone_numbers:
            return []
        statement = select(QueueEntry.phone_number, QueueEntry.id).where(
            QueueEntry.location_id == location_id,
            QueueEntry.status == QueueEntryStatus.waiting,
            QueueEntry.phone_number.in_(list(phone_numbers)),
        )
        with Session(self.engine) as session:
            return [(phone, entry_id) for phone, entry_id in session.exec(statement).all() if phone]

    def find_waiting_by_ids(self, location_id: str, entry_ids: Sequence[str]) -> List[QueueEntry]:
        if not entry_ids:
            return []
        statement = (
            select(QueueEntry)
            .where(
                QueueEntry.id.in_(list(entry_ids)),
                QueueEntry.location_id == location_id,
                QueueEntry.status == QueueEntryStatus.waiting,
            )
            .order_by(QueueEntry.position)
        )
        with Session(self.engine) as session:
            return list(session.exec(statement).all())

    def mark(
        self,
        entry_ids: Sequence[str],
        status: QueueEntryStatus,
        at: Optional[datetime] = None,
        only_waiting: bool = False,
    ) -> int:
        """Set ``status`` and its timestamp on every id in one statement.

        Returns the number of rows changed.
        """
        if not entry_ids:
            return 0
        at = at or utcnow()
        values = {"status": status, "updated_at": at}
        if status == QueueEntryStatus.completed:
            values["completed_at"] = at
        elif status == QueueEntryStatus.left:
            values["left_at"] = at
        statement = update(QueueEntry).where(QueueEntry.id.in_(list(entry_ids)))
        if only_waiting:
            statement = statement.where(QueueEntry.status == QueueEntryStatus.waiting)
        with self.engine.begin() as conn:
            return conn.execute(statement.values(**values)).rowcount

    def leave_all_waiting(self, location_id: str, at: Optional[datetime] = None) -> int:
        at = at or utcnow()
        statement = (
            update(QueueEntry)
            .where(
                QueueEntry.location_id == location_id,
                QueueEntry.status == QueueEntryStatus.waiting,
            )
            .values(status=QueueEntryStatus.left, left_at=at, updated_at=at)
        )
        with self.engine.begin() as conn:
            return conn.execute(statement).rowcount

    def completed_between(
        self, location_id: str, start: datetime, end: datetime
    ) -> List[Tuple[datetime, datetime]]:
        """(joined_at, completed_at) pairs for entries completed in [start, end)."""
        statement = select(QueueEntry.joined_at, QueueEntry.completed_at).where(
            QueueEntry.location_id == location_id,
            QueueEntry.status == QueueEntryStatus.completed,
            QueueEntry.completed_at >= start,
            QueueEntry.completed_at < end,
        )
        with Session(self.engine) as session:
            return [(joined, done) for joined, done in session.exec(statement).all()]

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
