"""Per-page incremental aggregation of itemized transactions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from donorscope.analysis.models import Checkpoint, Page, TransactionRecord

KEY_SEPARATOR = "|"


def _normalize(value: str | None) -> str:
    return (value or "").strip().upper()


def donor_key(record: TransactionRecord) -> str:
    """Return the normalized ``FIRST|LAST|STATE|ZIP`` identity for ``record``."""

    return KEY_SEPARATOR.join(
        _normalize(part) for part in (record.first_name, record.last_name, record.state, record.zip_code)
    )


def is_countable(record: TransactionRecord) -> bool:
    """Memo/sub-total entries and missing or non-positive amounts never enter aggregates."""

    if record.memoed_subtotal:
        return False
    return record.amount is not None and record.amount > 0


def fold_records(checkpoint: Checkpoint, records: Iterable[TransactionRecord]) -> int:
    """Fold ``records`` into ``checkpoint`` in place; returns how many were counted."""

    folded = 0
    for record in records:
        if not is_countable(record):
            continue
        amount = float(record.amount)
        key = donor_key(record)
        checkpoint.donor_totals[key] = checkpoint.donor_totals.get(key, 0.0) + amount
        checkpoint.amounts.append(amount)
        checkpoint.transaction_count += 1
        checkpoint.total_amount += amount
        folded += 1
    return folded


def fold_page(checkpoint: Checkpoint, page: Page) -> tuple[Checkpoint, int]:
    """Return a new checkpoint with ``page`` folded in and the cursor advanced.

    The input checkpoint is left untouched, so a failed save of the returned copy
    cannot leak a half-applied page into later saves.
    """

    working = checkpoint.model_copy(deep=True)
    folded = fold_records(working, page.records)
    if page.cursor is not None:
        working.cursor = page.cursor
    if working.source_reported_count is None and page.reported_count is not None:
        working.source_reported_count = page.reported_count
    working.pages_fetched += 1
    working.updated_at = datetime.now(timezone.utc)
    return working, folded


__all__ = ["KEY_SEPARATOR", "donor_key", "fold_page", "fold_records", "is_countable"]
