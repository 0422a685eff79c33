"""Unit tests for the member roster."""

from __future__ import annotations

import json

import pytest

from donorscope.store.member_directory import Member, MemberDirectory, load_members


def test_upsert_and_lookup(session_factory):
    directory = MemberDirectory(session_factory=session_factory)
    directory.upsert_many([Member(entity_id="B1", display_name="Doe, Jane", chamber="House", state="Texas")])
    directory.upsert_many([Member(entity_id="B1", display_name="Doe, Jane", chamber="Senate", state="Texas")])

    member = directory.get("B1")
    assert member.chamber == "Senate"
    assert directory.get("missing") is None
    assert [item.entity_id for item in directory.list_members()] == ["B1"]


def test_load_members_accepts_legacy_keys(session_factory, tmp_path):
    path = tmp_path / "members.json"
    path.write_text(
        json.dumps(
            {
                "members": [
                    {"bioguideId": "H001", "name": "Heinrich, Martin", "chamber": "Senate", "state": "New Mexico"},
                    {"entity_id": "A002", "display_name": "Roe, Sam", "state": "Iowa", "party": "I"},
                ]
            }
        ),
        encoding="utf-8",
    )
    directory = MemberDirectory(session_factory=session_factory)

    assert load_members(path, directory) == 2
    assert directory.get("H001").display_name == "Heinrich, Martin"
    assert directory.get("A002").chamber == "House"
    assert directory.get("A002").party == "I"


def test_from_mapping_requires_id_and_name():
    with pytest.raises(ValueError):
        Member.from_mapping({"name": "No Id"})
