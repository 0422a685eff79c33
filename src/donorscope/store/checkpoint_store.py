"""Persistence helpers for per-entity analysis checkpoints."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from donorscope.analysis.models import Checkpoint
from donorscope.store import sql as sql_schema
from donorscope.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckpointStore:
    """Get/put/delete around the ``analysis_checkpoints`` table.

    ``put`` replaces the whole row inside one transaction, so the aggregates and
    the cursor they were folded up to are always written together.
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

    def get(self, entity_id: str, cycle: int) -> Optional[Dict[str, Any]]:
        """Return the raw checkpoint payload for ``entity_id``/``cycle``."""

        table = sql_schema.analysis_checkpoints
        with self._session_scope() as session:
            row = session.execute(
                sa.select(table.c.payload).where(table.c.entity_id == entity_id, table.c.cycle == cycle)
            ).one_or_none()
        return dict(row.payload) if row else None

    def latest(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Return the newest checkpoint payload for ``entity_id`` regardless of cycle."""

        table = sql_schema.analysis_checkpoints
        with self._session_scope() as session:
            row = session.execute(
                sa.select(table.c.payload)
                .where(table.c.entity_id == entity_id)
                .order_by(table.c.cycle.desc())
                .limit(1)
            ).one_or_none()
        return dict(row.payload) if row else None

    def put(self, checkpoint: Checkpoint) -> None:
        """Persist ``checkpoint``, replacing any stored value for its key."""

        table = sql_schema.analysis_checkpoints
        timestamp = _utcnow()
        payload = checkpoint.model_dump(mode="json")
        with self._session_scope() as session:
            updated = session.execute(
                sa.update(table)
                .where(table.c.entity_id == checkpoint.entity_id, table.c.cycle == checkpoint.cycle)
                .values(payload=payload, updated_at=timestamp)
            )
            if updated.rowcount == 0:
                session.execute(
                    sa.insert(table).values(
                        entity_id=checkpoint.entity_id,
                        cycle=checkpoint.cycle,
                        payload=payload,
                        created_at=timestamp,
                        updated_at=timestamp,
                    )
                )
        LOGGER.debug(
            "Saved checkpoint entity_id=%s cycle=%s transactions=%s",
            checkpoint.entity_id,
            checkpoint.cycle,
            checkpoint.transaction_count,
        )

    def delete(self, entity_id: str, cycle: int | None = None) -> int:
        """Delete the checkpoint for ``entity_id`` (one cycle, or all when ``cycle`` is None)."""

        table = sql_schema.analysis_checkpoints
        statement = sa.delete(table).where(table.c.entity_id == entity_id)
        if cycle is not None:
            statement = statement.where(table.c.cycle == cycle)
        with self._session_scope() as session:
            result = session.execute(statement)
        return result.rowcount or 0


__all__ = ["CheckpointStore"]
