"""Persistence helpers for final analysis records."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from donorscope.analysis.models import AnalysisResult
from donorscope.store import sql as sql_schema
from donorscope.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


class ResultStore:
    """CRUD helpers around the ``analysis_results`` table."""

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

    def get(self, entity_id: str, cycle: int) -> Optional[AnalysisResult]:
        table = sql_schema.analysis_results
        with self._session_scope() as session:
            row = session.execute(
                sa.select(table.c.payload).where(table.c.entity_id == entity_id, table.c.cycle == cycle)
            ).one_or_none()
        return AnalysisResult.model_validate(row.payload) if row else None

    def exists(self, entity_id: str, cycle: int) -> bool:
        table = sql_schema.analysis_results
        with self._session_scope() as session:
            row = session.execute(
                sa.select(table.c.entity_id).where(table.c.entity_id == entity_id, table.c.cycle == cycle)
            ).first()
        return row is not None

    def completed_ids(self, cycle: int) -> set[str]:
        """Return entity ids with a final record for ``cycle``."""

        table = sql_schema.analysis_results
        with self._session_scope() as session:
            rows = session.execute(sa.select(table.c.entity_id).where(table.c.cycle == cycle)).fetchall()
        return {row.entity_id for row in rows}

    def finalize(self, result: AnalysisResult) -> None:
        """Write ``result`` and delete the matching checkpoint in one transaction.

        Raises ``sqlalchemy.exc.IntegrityError`` when a final record already exists,
        since final records are immutable.
        """

        results = sql_schema.analysis_results
        checkpoints = sql_schema.analysis_checkpoints
        with self._session_scope() as session:
            session.execute(
                sa.insert(results).values(
                    entity_id=result.entity_id,
                    cycle=result.cycle,
                    payload=result.model_dump(mode="json"),
                    completed_at=result.completed_at,
                )
            )
            session.execute(
                sa.delete(checkpoints).where(
                    checkpoints.c.entity_id == result.entity_id,
                    checkpoints.c.cycle == result.cycle,
                )
            )
        LOGGER.info("Finalized analysis entity_id=%s cycle=%s", result.entity_id, result.cycle)

    def delete(self, entity_id: str, cycle: int | None = None) -> int:
        """Delete final records for ``entity_id`` (one cycle, or all)."""

        table = sql_schema.analysis_results
        statement = sa.delete(table).where(table.c.entity_id == entity_id)
        if cycle is not None:
            statement = statement.where(table.c.cycle == cycle)
        with self._session_scope() as session:
            result = session.execute(statement)
        return result.rowcount or 0

    def prune(self, entity_id: str, *, keep: int) -> int:
        """Keep only the ``keep`` most recent cycles for ``entity_id``."""

        table = sql_schema.analysis_results
        with self._session_scope() as session:
            cycles = [
                row.cycle
                for row in session.execute(
                    sa.select(table.c.cycle).where(table.c.entity_id == entity_id).order_by(table.c.cycle.desc())
                ).fetchall()
            ]
            stale = cycles[max(keep, 1) :]
            if not stale:
                return 0
            session.execute(sa.delete(table).where(table.c.entity_id == entity_id, table.c.cycle.in_(stale)))
        LOGGER.info("Pruned final records entity_id=%s cycles=%s", entity_id, stale)
        return len(stale)


__all__ = ["ResultStore"]
