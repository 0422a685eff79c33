"""Read side of the member roster used for entity resolution and queue seeding."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from donorscope.store import sql as sql_schema
from donorscope.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Member:
    """Roster entry for one principal."""

    entity_id: str
    display_name: str
    chamber: str
    state: str
    party: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Member":
        entity_id = data.get("entity_id") or data.get("bioguideId") or data.get("id")
        display_name = data.get("display_name") or data.get("name")
        if not entity_id or not display_name:
            raise ValueError(f"Member entry requires an id and a name: {dict(data)!r}")
        return cls(
            entity_id=str(entity_id),
            display_name=str(display_name),
            chamber=str(data.get("chamber") or "House"),
            state=str(data.get("state") or ""),
            party=data.get("party"),
        )


class MemberDirectory:
    """Lookup and bulk upsert around the ``members`` table."""

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

    def get(self, entity_id: str) -> Optional[Member]:
        table = sql_schema.members
        with self._session_scope() as session:
            row = session.execute(sa.select(table).where(table.c.entity_id == entity_id)).first()
        if row is None:
            return None
        return Member(
            entity_id=row.entity_id,
            display_name=row.display_name,
            chamber=row.chamber,
            state=row.state,
            party=row.party,
        )

    def list_members(self) -> List[Member]:
        table = sql_schema.members
        with self._session_scope() as session:
            rows = session.execute(sa.select(table).order_by(table.c.entity_id.asc())).fetchall()
        return [
            Member(
                entity_id=row.entity_id,
                display_name=row.display_name,
                chamber=row.chamber,
                state=row.state,
                party=row.party,
            )
            for row in rows
        ]

    def upsert_many(self, members: Iterable[Member]) -> int:
        """Insert or update every member; returns the number written."""

        table = sql_schema.members
        timestamp = datetime.now(timezone.utc)
        count = 0
        with self._session_scope() as session:
            for member in members:
                values = {
                    "display_name": member.display_name,
                    "chamber": member.chamber,
                    "state": member.state,
                    "party": member.party,
                    "updated_at": timestamp,
                }
                updated = session.execute(
                    sa.update(table).where(table.c.entity_id == member.entity_id).values(**values)
                )
                if updated.rowcount == 0:
                    session.execute(sa.insert(table).values(entity_id=member.entity_id, **values))
                count += 1
        LOGGER.info("Upserted %s members", count)
        return count


def load_members(path: Path, directory: MemberDirectory) -> int:
    """Seed ``directory`` from a JSON file holding a list (or ``{"members": [...]}``)."""

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    entries = data.get("members", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValueError(f"Expected a list of members in {path}")
    return directory.upsert_many(Member.from_mapping(entry) for entry in entries)


__all__ = ["Member", "MemberDirectory", "load_members"]
