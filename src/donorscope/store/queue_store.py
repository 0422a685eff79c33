"""Persistence helpers for the ordered processing queue."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from donorscope.store import sql as sql_schema
from donorscope.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class QueueLease:
    """Exclusive claim on the queue head for one invocation."""

    entity_id: str
    token: str
    leased_until: datetime


class QueueStore:
    """Ordered worklist around the ``processing_queue`` table.

    Each entity appears at most once (primary key). Only the head row is ever
    leased, and a lease is taken with a conditional update so two concurrent
    invocations cannot both advance it.
    """

    def __init__(self, *, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or default_session_factory()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def replace(self, entity_ids: Iterable[str]) -> int:
        """Rebuild the queue from ``entity_ids`` in order, dropping duplicates."""

        table = sql_schema.processing_queue
        timestamp = _utcnow()
        ordered = list(dict.fromkeys(entity_ids))
        with self._session_scope() as session:
            session.execute(sa.delete(table))
            if ordered:
                session.execute(
                    sa.insert(table),
                    [
                        {"entity_id": entity_id, "position": index, "enqueued_at": timestamp}
                        for index, entity_id in enumerate(ordered)
                    ],
                )
        LOGGER.info("Rebuilt processing queue size=%s", len(ordered))
        return len(ordered)

    def enqueue(self, entity_id: str) -> bool:
        """Append ``entity_id`` at the tail unless it is already queued."""

        table = sql_schema.processing_queue
        with self._session_scope() as session:
            existing = session.execute(sa.select(table.c.entity_id).where(table.c.entity_id == entity_id)).first()
            if existing:
                return False
            tail = session.execute(sa.select(sa.func.max(table.c.position))).scalar()
            session.execute(
                sa.insert(table).values(
                    entity_id=entity_id,
                    position=(tail + 1) if tail is not None else 0,
                    enqueued_at=_utcnow(),
                )
            )
        LOGGER.info("Queued entity_id=%s", entity_id)
        return True

    def head(self) -> Optional[str]:
        table = sql_schema.processing_queue
        with self._session_scope() as session:
            row = session.execute(
                sa.select(table.c.entity_id).order_by(table.c.position.asc()).limit(1)
            ).first()
        return row.entity_id if row else None

    def acquire_head(self, *, lease_seconds: int) -> Optional[QueueLease]:
        """Lease the head entity, or return ``None`` when it is held by another invocation.

        Callers distinguish "empty" from "busy" with :meth:`head`.
        """

        table = sql_schema.processing_queue
        now = _utcnow()
        leased_until = now + timedelta(seconds=lease_seconds)
        token = uuid.uuid4().hex
        with self._session_scope() as session:
            row = session.execute(
                sa.select(table.c.entity_id).order_by(table.c.position.asc()).limit(1)
            ).first()
            if row is None:
                return None
            claimed = session.execute(
                sa.update(table)
                .where(
                    table.c.entity_id == row.entity_id,
                    sa.or_(table.c.leased_until.is_(None), table.c.leased_until <= now),
                )
                .values(leased_until=leased_until, lease_token=token)
            )
            if claimed.rowcount != 1:
                LOGGER.info("Queue head entity_id=%s is leased by another invocation", row.entity_id)
                return None
        return QueueLease(entity_id=row.entity_id, token=token, leased_until=leased_until)

    def is_leased(self, entity_id: Optional[str] = None) -> bool:
        """Return True when ``entity_id`` (or any row when omitted) holds an unexpired lease."""

        table = sql_schema.processing_queue
        query = sa.select(table.c.entity_id).where(table.c.leased_until > _utcnow())
        if entity_id is not None:
            query = query.where(table.c.entity_id == entity_id)
        with self._session_scope() as session:
            return session.execute(query.limit(1)).first() is not None

    def release(self, lease: QueueLease) -> None:
        """Clear ``lease`` if it is still held."""

        table = sql_schema.processing_queue
        with self._session_scope() as session:
            session.execute(
                sa.update(table)
                .where(table.c.entity_id == lease.entity_id, table.c.lease_token == lease.token)
                .values(leased_until=None, lease_token=None)
            )

    def remove(self, entity_id: str) -> bool:
        table = sql_schema.processing_queue
        with self._session_scope() as session:
            result = session.execute(sa.delete(table).where(table.c.entity_id == entity_id))
        removed = bool(result.rowcount)
        if removed:
            LOGGER.info("Removed entity_id=%s from processing queue", entity_id)
        return removed

    def list_ids(self) -> List[str]:
        table = sql_schema.processing_queue
        with self._session_scope() as session:
            rows = session.execute(sa.select(table.c.entity_id).order_by(table.c.position.asc())).fetchall()
        return [row.entity_id for row in rows]

    def length(self) -> int:
        table = sql_schema.processing_queue
        with self._session_scope() as session:
            return int(session.execute(sa.select(sa.func.count()).select_from(table)).scalar() or 0)


__all__ = ["QueueLease", "QueueStore"]
