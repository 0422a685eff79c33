"""Entity to source-id resolution and reporting-cycle selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Protocol

from donorscope.store.member_directory import Member

LOGGER = logging.getLogger(__name__)

STATE_CODES: Dict[str, str] = {
    "Alabama": "AL", "Alaska": "AK", "Arizona": "AZ", "Arkansas": "AR", "California": "CA",
    "Colorado": "CO", "Connecticut": "CT", "Delaware": "DE", "Florida": "FL", "Georgia": "GA",
    "Hawaii": "HI", "Idaho": "ID", "Illinois": "IL", "Indiana": "IN", "Iowa": "IA",
    "Kansas": "KS", "Kentucky": "KY", "Louisiana": "LA", "Maine": "ME", "Maryland": "MD",
    "Massachusetts": "MA", "Michigan": "MI", "Minnesota": "MN", "Mississippi": "MS", "Missouri": "MO",
    "Montana": "MT", "Nebraska": "NE", "Nevada": "NV", "New Hampshire": "NH", "New Jersey": "NJ",
    "New Mexico": "NM", "New York": "NY", "North Carolina": "NC", "North Dakota": "ND", "Ohio": "OH",
    "Oklahoma": "OK", "Oregon": "OR", "Pennsylvania": "PA", "Rhode Island": "RI", "South Carolina": "SC",
    "South Dakota": "SD", "Tennessee": "TN", "Texas": "TX", "Utah": "UT", "Vermont": "VT",
    "Virginia": "VA", "Washington": "WA", "West Virginia": "WV", "Wisconsin": "WI", "Wyoming": "WY",
}  # fmt: skip


class EntityResolutionError(RuntimeError):
    """Raised when an entity cannot be bound to a source id."""


class CandidateSearch(Protocol):
    def search_candidates(self, *, name: str, office: str, state: str) -> List[Dict[str, Any]]: ...


class MemberLookup(Protocol):
    def get(self, entity_id: str) -> Optional[Member]: ...


@dataclass(slots=True)
class SearchQuery:
    name: str
    office: str
    state: str


def reporting_cycle(today: date | None = None, *, override: int | None = None) -> int:
    """Return the two-year reporting period containing ``today`` (even year)."""

    if override:
        return override
    year = (today or date.today()).year
    return year if year % 2 == 0 else year + 1


def build_query(member: Member) -> SearchQuery:
    """Derive candidate-search filters from a roster entry.

    ``"Heinrich, Martin"`` searches by ``Heinrich``; Senate maps to office ``S``
    and everything else to ``H``.
    """

    last_name = member.display_name.split(",")[0].strip()
    office = "S" if member.chamber.strip().lower() == "senate" else "H"
    state = STATE_CODES.get(member.state.strip(), member.state.strip())
    return SearchQuery(name=last_name, office=office, state=state)


def select_committee(candidates: List[Dict[str, Any]], cycle: int) -> Optional[str]:
    """Pick a principal committee from the first candidate.

    Only the first search result is considered; similar names in one state can
    bind the wrong committee.
    """

    if not candidates:
        return None
    committees = [c for c in candidates[0].get("principal_committees") or [] if c.get("committee_id")]
    if not committees:
        return None
    for committee in committees:
        if cycle in (committee.get("cycles") or []):
            return str(committee["committee_id"])
    return str(committees[0]["committee_id"])


class EntityResolver:
    """Resolve an entity id to the committee id used by the transaction source."""

    def __init__(self, *, members: MemberLookup, search: CandidateSearch) -> None:
        self._members = members
        self._search = search

    def resolve(self, entity_id: str, cycle: int) -> str:
        member = self._members.get(entity_id)
        if member is None:
            raise EntityResolutionError(f"Member not found in directory: {entity_id}")
        query = build_query(member)
        LOGGER.info("Searching candidates name=%s office=%s state=%s", query.name, query.office, query.state)
        candidates = self._search.search_candidates(name=query.name, office=query.office, state=query.state)
        if not candidates:
            raise EntityResolutionError(f"No candidates found for {entity_id} ({query.name})")
        committee_id = select_committee(candidates, cycle)
        if committee_id is None:
            raise EntityResolutionError(f"No principal committee found for {entity_id} ({query.name})")
        LOGGER.info("Resolved entity_id=%s committee_id=%s cycle=%s", entity_id, committee_id, cycle)
        return committee_id


__all__ = [
    "EntityResolutionError",
    "EntityResolver",
    "STATE_CODES",
    "SearchQuery",
    "build_query",
    "reporting_cycle",
    "select_committee",
]
