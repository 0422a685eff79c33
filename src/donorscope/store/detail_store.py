"""Optional bulk detail store for raw transactions and donor aggregates.

Writes here are additive and never affect the aggregation engine: failures are
logged and reported through the return value instead of raising.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from donorscope.analysis.aggregator import donor_key, is_countable
from donorscope.analysis.models import Reconciliation, TransactionRecord
from donorscope.store import sql as sql_schema
from donorscope.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


class DetailStore:
    """Writer for ``itemized_transactions``, ``donor_aggregates`` and ``collection_metadata``."""

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

    def write_transactions(
        self,
        *,
        entity_id: str,
        source_id: str,
        cycle: int,
        records: Iterable[TransactionRecord],
    ) -> bool:
        """Store the countable records of one page."""

        rows = [
            {
                "entity_id": entity_id,
                "source_id": source_id,
                "cycle": cycle,
                "donor_key": donor_key(record),
                "first_name": record.first_name or None,
                "last_name": record.last_name or None,
                "state": record.state or None,
                "zip_code": record.zip_code or None,
                "employer": record.employer,
                "occupation": record.occupation,
                "amount": record.amount,
                "receipt_date": record.receipt_date,
            }
            for record in records
            if is_countable(record)
        ]
        if not rows:
            return True
        try:
            with self._session_scope() as session:
                session.execute(sa.insert(sql_schema.itemized_transactions), rows)
        except SQLAlchemyError:
            LOGGER.exception("Detail store transaction write failed entity_id=%s cycle=%s", entity_id, cycle)
            return False
        return True

    def write_donor_aggregates(self, *, entity_id: str, cycle: int, donor_totals: Mapping[str, float]) -> bool:
        """Replace the per-donor totals for ``entity_id``/``cycle``."""

        table = sql_schema.donor_aggregates
        timestamp = datetime.now(timezone.utc)
        try:
            with self._session_scope() as session:
                session.execute(sa.delete(table).where(table.c.entity_id == entity_id, table.c.cycle == cycle))
                if donor_totals:
                    session.execute(
                        sa.insert(table),
                        [
                            {
                                "entity_id": entity_id,
                                "cycle": cycle,
                                "donor_key": key,
                                "total_amount": amount,
                                "updated_at": timestamp,
                            }
                            for key, amount in donor_totals.items()
                        ],
                    )
        except SQLAlchemyError:
            LOGGER.exception("Detail store aggregate write failed entity_id=%s cycle=%s", entity_id, cycle)
            return False
        return True

    def write_collection_metadata(
        self,
        *,
        entity_id: str,
        source_id: str,
        cycle: int,
        status: str,
        transaction_count: int,
        donor_count: int,
        total_amount: float,
        reconciliation: Optional[Reconciliation] = None,
    ) -> bool:
        """Upsert the collection-status row for ``entity_id``/``cycle``."""

        table = sql_schema.collection_metadata
        values = {
            "source_id": source_id,
            "status": status,
            "transaction_count": transaction_count,
            "donor_count": donor_count,
            "total_amount": total_amount,
            "reconciliation": reconciliation.model_dump(mode="json") if reconciliation else None,
            "updated_at": datetime.now(timezone.utc),
        }
        try:
            with self._session_scope() as session:
                updated = session.execute(
                    sa.update(table).where(table.c.entity_id == entity_id, table.c.cycle == cycle).values(**values)
                )
                if updated.rowcount == 0:
                    session.execute(sa.insert(table).values(entity_id=entity_id, cycle=cycle, **values))
        except SQLAlchemyError:
            LOGGER.exception("Detail store metadata write failed entity_id=%s cycle=%s", entity_id, cycle)
            return False
        return True

    def delete_entity(self, entity_id: str, cycle: int) -> None:
        """Drop detail rows for a reprocess request."""

        try:
            with self._session_scope() as session:
                for table in (
                    sql_schema.itemized_transactions,
                    sql_schema.donor_aggregates,
                    sql_schema.collection_metadata,
                ):
                    session.execute(sa.delete(table).where(table.c.entity_id == entity_id, table.c.cycle == cycle))
        except SQLAlchemyError:
            LOGGER.exception("Detail store delete failed entity_id=%s cycle=%s", entity_id, cycle)


__all__ = ["DetailStore"]
