"""End-to-end tests for AnalysisEngine against a tmp_path SQLite database."""

from __future__ import annotations

import pytest
import sqlalchemy as sa
from sqlalchemy.exc import OperationalError

from donorscope.analysis.engine import QueueBusyError
from donorscope.analysis.models import Cursor, Page, TransactionRecord
from donorscope.services.factories import build_analysis_engine
from donorscope.sources.fec import TransientSourceError
from donorscope.store import sql as sql_schema
from donorscope.store.member_directory import Member

ENTITY = "E100"
COMMITTEE = "C00000001"


def _records(count: int, *, start: int, amount: float = 10.0) -> list[TransactionRecord]:
    return [
        TransactionRecord(
            first_name=f"Donor{start + index}",
            last_name="Example",
            state="CA",
            zip_code="90210",
            amount=amount,
        )
        for index in range(count)
    ]


class FakeSource:
    """Cursor-driven fake: the page served depends only on the cursor sent."""

    def __init__(self, sizes, *, candidates=None, total=None, fail_on_pages=()):
        self.pages = []
        start = 0
        for index, size in enumerate(sizes):
            is_last = index == len(sizes) - 1
            self.pages.append(
                Page(
                    records=_records(size, start=start),
                    cursor=None if is_last else Cursor(last_index=str(index + 1), last_date="2026-01-01"),
                    reported_count=sum(sizes),
                )
            )
            start += size
        self.candidates = (
            candidates
            if candidates is not None
            else [{"principal_committees": [{"committee_id": COMMITTEE, "cycles": [2024, 2026]}]}]
        )
        self.total = total
        self.fail_on_pages = set(fail_on_pages)
        self.calls = 0
        self.cursors_seen = []

    def fetch_contributions(self, source_id, cycle, *, page_size, cursor=None):
        self.calls += 1
        assert source_id == COMMITTEE
        self.cursors_seen.append(cursor)
        index = 0 if cursor is None else int(cursor.last_index)
        if index in self.fail_on_pages:
            self.fail_on_pages.discard(index)
            raise TransientSourceError("HTTP 503")
        return self.pages[index]

    def fetch_itemized_total(self, source_id, cycle):
        self.calls += 1
        return self.total

    def search_candidates(self, *, name, office, state):
        self.calls += 1
        return self.candidates

    def close(self):
        pass


def _engine(make_settings, session_factory, source, **overrides):
    engine = build_analysis_engine(
        settings=make_settings(**overrides),
        session_factory=session_factory,
        source=source,
    )
    engine.members.upsert_many([Member(entity_id=ENTITY, display_name="Doe, Jane", chamber="House", state="California")])
    engine.queue.replace([ENTITY])
    return engine


def test_page_budget_exhaustion_is_not_completion(make_settings, session_factory):
    source = FakeSource([100, 100, 100, 100, 0], total=4000.0)
    engine = _engine(make_settings, session_factory, source, page_budget=3)

    first = engine.process_next_chunk()

    assert first.status == "in_progress"
    assert first.completed is False
    assert first.pages_fetched == 3
    assert first.records_folded == 300
    assert engine.results.get(ENTITY, 2026) is None
    assert engine.queue.list_ids() == [ENTITY]
    stored = engine.checkpoints.get(ENTITY, 2026)
    assert stored["transaction_count"] == 300
    assert stored["cursor"]["last_index"] == "3"
    assert stored["runs_completed"] == 1

    second = engine.process_next_chunk()

    assert second.status == "complete"
    assert second.pages_fetched == 2
    assert second.result is not None
    assert second.result.metrics.transaction_count == 400
    assert second.result.metrics.total_amount == pytest.approx(4000.0)
    assert second.result.runs_completed == 2
    assert engine.checkpoints.get(ENTITY, 2026) is None
    assert engine.queue.list_ids() == []
    assert engine.results.get(ENTITY, 2026).metrics.unique_donors == 400


def test_cursor_is_forwarded_unchanged_and_first_page_has_none(make_settings, session_factory):
    source = FakeSource([5, 5, 0])
    engine = _engine(make_settings, session_factory, source)

    engine.process_next_chunk()

    assert source.cursors_seen[0] is None
    assert source.cursors_seen[1] == Cursor(last_index="1", last_date="2026-01-01")
    assert source.cursors_seen[2] == Cursor(last_index="2", last_date="2026-01-01")


def test_transient_failure_keeps_progress_and_next_run_resumes(make_settings, session_factory):
    source = FakeSource([50, 50, 50, 0], total=1500.0, fail_on_pages={2})
    engine = _engine(make_settings, session_factory, source)

    partial = engine.process_next_chunk()

    assert partial.status == "partial"
    assert "503" in partial.error
    assert partial.records_folded == 100
    assert engine.checkpoints.get(ENTITY, 2026)["transaction_count"] == 100
    assert engine.queue.list_ids() == [ENTITY]

    resumed = engine.process_next_chunk()

    assert resumed.status == "complete"
    assert resumed.result.metrics.transaction_count == 150
    assert resumed.result.reconciliation.status == "within_tolerance"


def test_failed_checkpoint_save_never_double_counts(make_settings, session_factory, monkeypatch):
    source = FakeSource([100, 100, 100, 0])
    engine = _engine(make_settings, session_factory, source)
    real_put = engine.checkpoints.put
    saves = {"count": 0}

    def flaky_put(checkpoint):
        saves["count"] += 1
        if saves["count"] == 2:
            raise OperationalError("UPDATE analysis_checkpoints", {}, Exception("disk I/O error"))
        real_put(checkpoint)

    monkeypatch.setattr(engine.checkpoints, "put", flaky_put)

    with pytest.raises(OperationalError):
        engine.process_next_chunk()

    assert engine.checkpoints.get(ENTITY, 2026)["transaction_count"] == 100

    # the page whose save failed is fetched again from the stored cursor and folded once
    result = engine.process_next_chunk()

    assert result.status == "complete"
    assert result.result.metrics.transaction_count == 300
    assert result.result.metrics.unique_donors == 300


def test_completed_entity_needs_zero_calls_and_is_not_requeued(make_settings, session_factory):
    source = FakeSource([10, 0])
    engine = _engine(make_settings, session_factory, source)
    assert engine.process_next_chunk().status == "complete"

    engine.queue.enqueue(ENTITY)
    calls_before = source.calls
    again = engine.process_next_chunk()

    assert again.status == "complete"
    assert again.source_calls == 0
    assert source.calls == calls_before
    assert engine.queue.list_ids() == []

    init = engine.initialize_queue()
    assert init.queued == 0
    assert init.already_complete == 1
    assert engine.queue.list_ids() == []


def test_resolution_failure_keeps_entity_at_head(make_settings, session_factory):
    source = FakeSource([10, 0], candidates=[])
    engine = _engine(make_settings, session_factory, source)

    first = engine.process_next_chunk()
    second = engine.process_next_chunk()

    assert first.status == "failed"
    assert "No candidates" in first.error
    assert second.status == "failed"
    assert engine.queue.head() == ENTITY
    assert engine.checkpoints.get(ENTITY, 2026) is None


def test_busy_when_head_is_leased_elsewhere(make_settings, session_factory):
    source = FakeSource([10, 0])
    engine = _engine(make_settings, session_factory, source)
    engine.queue.acquire_head(lease_seconds=300)

    result = engine.process_next_chunk()

    assert result.status == "busy"
    assert result.entity_id == ENTITY
    assert source.calls == 0


def test_idle_when_queue_is_empty(make_settings, session_factory):
    source = FakeSource([0])
    engine = _engine(make_settings, session_factory, source)
    engine.queue.replace([])

    assert engine.process_next_chunk().status == "idle"
    assert source.calls == 0


def test_reconciliation_flag_and_count_mismatch_are_recorded(make_settings, session_factory):
    source = FakeSource([20, 0], total=1000.0)
    source.pages[0] = source.pages[0].model_copy(update={"reported_count": 25})
    engine = _engine(make_settings, session_factory, source)

    result = engine.process_next_chunk().result

    assert result.reconciliation.status == "flagged"
    assert result.reconciliation.percent_difference == pytest.approx(80.0)
    assert result.source_reported_count == 25
    assert result.count_mismatch is True


def test_status_reports_phases_without_internal_structures(make_settings, session_factory):
    source = FakeSource([10, 10, 0])
    engine = _engine(make_settings, session_factory, source, page_budget=1)
    engine.members.upsert_many([Member(entity_id="E200", display_name="Roe, Sam", chamber="Senate", state="Iowa")])
    engine.queue.enqueue("E200")

    assert engine.entity_status(ENTITY).phase == "not_started"
    engine.process_next_chunk()

    report = engine.status()
    assert report.queue_length == 2
    assert report.next_entity == ENTITY
    assert report.current.phase == "in_progress"
    assert report.current.transaction_count == 10
    assert report.completed == 0
    assert report.total == 2
    assert "donor_totals" not in report.model_dump()["current"]

    engine.process_next_chunk()
    engine.process_next_chunk()

    done = engine.entity_status(ENTITY)
    assert done.phase == "complete"
    assert done.metrics.transaction_count == 20
    report = engine.status()
    assert report.completed == 1
    assert report.percent_complete == 50.0
    assert engine.entity_status("UNKNOWN") is None


def test_reprocess_drops_result_and_requeues(make_settings, session_factory):
    source = FakeSource([10, 0])
    engine = _engine(make_settings, session_factory, source)
    engine.process_next_chunk()

    status = engine.reprocess(ENTITY)

    assert status.phase == "not_started"
    assert engine.results.get(ENTITY, 2026) is None
    assert engine.queue.list_ids() == [ENTITY]
    assert engine.process_next_chunk().status == "complete"


def test_admin_operations_refuse_while_head_is_leased(make_settings, session_factory):
    source = FakeSource([10, 10, 0])
    engine = _engine(make_settings, session_factory, source, page_budget=1)
    engine.process_next_chunk()
    lease = engine.queue.acquire_head(lease_seconds=300)

    with pytest.raises(QueueBusyError):
        engine.reprocess(ENTITY)
    with pytest.raises(QueueBusyError):
        engine.initialize_queue()

    assert engine.checkpoints.get(ENTITY, 2026)["transaction_count"] == 10
    assert engine.queue.list_ids() == [ENTITY]
    assert engine.queue.is_leased(ENTITY) is True

    engine.queue.release(lease)
    assert engine.reprocess(ENTITY).phase == "not_started"
    assert engine.checkpoints.get(ENTITY, 2026) is None


def test_detail_store_receives_transactions_and_aggregates(make_settings, session_factory):
    source = FakeSource([3, 2, 0])
    engine = _engine(make_settings, session_factory, source, detail_store_enabled=True)

    engine.process_next_chunk()

    with session_factory() as session:
        transactions = session.execute(sa.select(sa.func.count()).select_from(sql_schema.itemized_transactions)).scalar()
        aggregates = session.execute(sa.select(sa.func.count()).select_from(sql_schema.donor_aggregates)).scalar()
        metadata = session.execute(sa.select(sql_schema.collection_metadata)).one()
    assert transactions == 5
    assert aggregates == 5
    assert metadata.status == "complete"
    assert metadata.transaction_count == 5
