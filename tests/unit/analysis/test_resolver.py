"""Unit tests for entity resolution and cycle selection."""

from __future__ import annotations

from datetime import date

import pytest

from donorscope.analysis.resolver import (
    EntityResolutionError,
    EntityResolver,
    build_query,
    reporting_cycle,
    select_committee,
)
from donorscope.store.member_directory import Member


def test_reporting_cycle_rounds_odd_years_up():
    assert reporting_cycle(date(2026, 5, 1)) == 2026
    assert reporting_cycle(date(2025, 12, 31)) == 2026
    assert reporting_cycle(date(2025, 1, 1), override=2024) == 2024


def test_build_query_from_roster_entry():
    senate = build_query(Member(entity_id="H1", display_name="Heinrich, Martin", chamber="Senate", state="New Mexico"))
    house = build_query(Member(entity_id="X1", display_name="Doe, Jane", chamber="House", state="TX"))

    assert (senate.name, senate.office, senate.state) == ("Heinrich", "S", "NM")
    assert (house.name, house.office, house.state) == ("Doe", "H", "TX")


def test_select_committee_prefers_cycle_match_then_first():
    candidates = [
        {
            "principal_committees": [
                {"committee_id": "C_OLD", "cycles": [2018, 2020]},
                {"committee_id": "C_NEW", "cycles": [2024, 2026]},
            ]
        },
        {"principal_committees": [{"committee_id": "C_OTHER", "cycles": [2026]}]},
    ]

    assert select_committee(candidates, 2026) == "C_NEW"
    assert select_committee(candidates, 2030) == "C_OLD"
    assert select_committee([{"principal_committees": []}], 2026) is None
    assert select_committee([], 2026) is None


class _Members:
    def __init__(self, *members):
        self._members = {member.entity_id: member for member in members}

    def get(self, entity_id):
        return self._members.get(entity_id)


class _Search:
    def __init__(self, results):
        self.results = results
        self.queries = []

    def search_candidates(self, *, name, office, state):
        self.queries.append((name, office, state))
        return self.results


def test_resolver_returns_committee_id():
    search = _Search([{"principal_committees": [{"committee_id": "C1", "cycles": [2026]}]}])
    resolver = EntityResolver(
        members=_Members(Member(entity_id="E1", display_name="Doe, Jane", chamber="Senate", state="Iowa")),
        search=search,
    )

    assert resolver.resolve("E1", 2026) == "C1"
    assert search.queries == [("Doe", "S", "IA")]


@pytest.mark.parametrize(
    "members, results, message",
    [
        (_Members(), [], "not found"),
        (_Members(Member(entity_id="E1", display_name="Doe, Jane", chamber="House", state="TX")), [], "No candidates"),
        (
            _Members(Member(entity_id="E1", display_name="Doe, Jane", chamber="House", state="TX")),
            [{"principal_committees": []}],
            "No principal committee",
        ),
    ],
)
def test_resolver_failures(members, results, message):
    resolver = EntityResolver(members=members, search=_Search(results))

    with pytest.raises(EntityResolutionError, match=message):
        resolver.resolve("E1", 2026)
