"""Unit tests for donor keys and page folding."""

from __future__ import annotations

from donorscope.analysis.aggregator import donor_key, fold_page, fold_records, is_countable
from donorscope.analysis.models import Checkpoint, Cursor, Page, TransactionRecord


def _checkpoint() -> Checkpoint:
    return Checkpoint(entity_id="E1", source_id="C1", cycle=2026)


def test_donor_key_normalizes_case_and_whitespace():
    first = TransactionRecord(first_name="john", last_name="SMITH ", state="ca", zip_code="90210", amount=25)
    second = TransactionRecord(first_name="JOHN", last_name="Smith", state="CA", zip_code="90210 ", amount=75)

    assert donor_key(first) == donor_key(second) == "JOHN|SMITH|CA|90210"

    checkpoint = _checkpoint()
    fold_records(checkpoint, [first, second])

    assert checkpoint.donor_totals == {"JOHN|SMITH|CA|90210": 100.0}
    assert checkpoint.transaction_count == 2


def test_memo_and_non_positive_records_are_excluded():
    checkpoint = _checkpoint()
    fold_records(checkpoint, [TransactionRecord(first_name="A", amount=40)])
    before = checkpoint.model_copy(deep=True)

    folded = fold_records(
        checkpoint,
        [
            TransactionRecord(first_name="A", amount=500, memoed_subtotal=True),
            TransactionRecord(first_name="A", amount=0),
            TransactionRecord(first_name="A", amount=-5),
            TransactionRecord(first_name="A"),
        ],
    )

    assert folded == 0
    assert checkpoint.total_amount == before.total_amount
    assert checkpoint.transaction_count == before.transaction_count
    assert checkpoint.donor_totals == before.donor_totals
    assert checkpoint.amounts == before.amounts


def test_source_rows_are_validated_at_ingress():
    record = TransactionRecord.model_validate(
        {
            "contributor_first_name": None,
            "contributor_last_name": "Doe",
            "contribution_receipt_amount": "12.50",
            "memoed_subtotal": None,
            "unexpected": "ignored",
        }
    )

    assert record.first_name == ""
    assert record.amount == 12.5
    assert record.memoed_subtotal is False
    assert is_countable(record)
    assert TransactionRecord.model_validate({"contribution_receipt_amount": "n/a"}).amount is None


def test_loose_optional_fields_are_coerced_to_text():
    record = TransactionRecord.model_validate(
        {
            "contributor_first_name": "Ann",
            "contributor_employer": 12345,
            "contributor_occupation": {"unexpected": "shape"},
            "contribution_receipt_date": 20260115,
            "contribution_receipt_amount": 10,
        }
    )

    assert record.employer == "12345"
    assert record.occupation is None
    assert record.receipt_date == "20260115"
    assert is_countable(record)


def test_fold_page_works_on_a_copy_and_advances_cursor():
    original = _checkpoint()
    page = Page(
        records=[TransactionRecord(first_name="A", amount=10), TransactionRecord(first_name="B", amount=30)],
        cursor=Cursor(last_index="42", last_date="2026-02-01"),
        reported_count=500,
    )

    updated, folded = fold_page(original, page)

    assert folded == 2
    assert original.transaction_count == 0
    assert original.cursor is None
    assert updated.cursor == Cursor(last_index="42", last_date="2026-02-01")
    assert updated.total_amount == 40.0
    assert updated.amounts == [10.0, 30.0]
    assert updated.source_reported_count == 500
    assert updated.pages_fetched == 1


def test_fold_page_keeps_cursor_and_first_reported_count():
    checkpoint = _checkpoint().model_copy(
        update={"cursor": Cursor(last_index="7"), "source_reported_count": 100}
    )

    updated, _ = fold_page(checkpoint, Page(records=[TransactionRecord(amount=5)], reported_count=250))

    assert updated.cursor == Cursor(last_index="7")
    assert updated.source_reported_count == 100
