"""Unit tests for CheckpointStore persistence."""

from __future__ import annotations

from donorscope.analysis.models import Checkpoint, Cursor
from donorscope.store.checkpoint_store import CheckpointStore


def _checkpoint(**overrides) -> Checkpoint:
    values = {"entity_id": "E1", "source_id": "C1", "cycle": 2026}
    values.update(overrides)
    return Checkpoint(**values)


def test_put_get_and_replace(session_factory):
    store = CheckpointStore(session_factory=session_factory)

    assert store.get("E1", 2026) is None

    store.put(_checkpoint(transaction_count=2, donor_totals={"A|B|CA|1": 20.0}, cursor=Cursor(last_index="5")))
    store.put(_checkpoint(transaction_count=4, donor_totals={"A|B|CA|1": 40.0}, cursor=Cursor(last_index="9")))

    payload = store.get("E1", 2026)
    assert payload["transaction_count"] == 4
    assert payload["donor_totals"] == {"A|B|CA|1": 40.0}
    assert payload["cursor"]["last_index"] == "9"


def test_latest_prefers_newest_cycle(session_factory):
    store = CheckpointStore(session_factory=session_factory)
    store.put(_checkpoint(cycle=2024, transaction_count=1))
    store.put(_checkpoint(cycle=2026, transaction_count=2))

    assert store.latest("E1")["cycle"] == 2026
    assert store.latest("E2") is None


def test_delete_one_cycle_or_all(session_factory):
    store = CheckpointStore(session_factory=session_factory)
    store.put(_checkpoint(cycle=2024))
    store.put(_checkpoint(cycle=2026))

    assert store.delete("E1", 2024) == 1
    assert store.get("E1", 2024) is None
    assert store.get("E1", 2026) is not None
    assert store.delete("E1") == 1
    assert store.latest("E1") is None
