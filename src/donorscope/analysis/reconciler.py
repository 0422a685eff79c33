"""Comparison of computed totals against the authoritative source total."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from donorscope.analysis.models import Reconciliation
from donorscope.sources.fec import SourceError

LOGGER = logging.getLogger(__name__)


class TotalsSource(Protocol):
    def fetch_itemized_total(self, source_id: str, cycle: int) -> Optional[float]: ...


def classify(computed_total: float, authoritative_total: Optional[float], *, tolerance_percent: float) -> Reconciliation:
    """Classify the difference between ``computed_total`` and ``authoritative_total``."""

    if not authoritative_total or authoritative_total <= 0:
        return Reconciliation(
            status="no_reference",
            computed_total=computed_total,
            authoritative_total=authoritative_total,
            tolerance_percent=tolerance_percent,
        )
    difference = abs(computed_total - authoritative_total)
    percent = difference / authoritative_total * 100
    flagged = percent > tolerance_percent
    return Reconciliation(
        status="flagged" if flagged else "within_tolerance",
        computed_total=computed_total,
        authoritative_total=authoritative_total,
        difference=difference,
        percent_difference=percent,
        tolerance_percent=tolerance_percent,
        flagged=flagged,
    )


def reconcile(
    source: TotalsSource,
    *,
    source_id: str,
    cycle: int,
    computed_total: float,
    tolerance_percent: float,
) -> Reconciliation:
    """Fetch the authoritative total and classify it; never raises for source failures."""

    try:
        authoritative = source.fetch_itemized_total(source_id, cycle)
    except SourceError as exc:
        LOGGER.warning("Reconciliation total unavailable source_id=%s cycle=%s: %s", source_id, cycle, exc)
        return Reconciliation(
            status="unavailable",
            computed_total=computed_total,
            tolerance_percent=tolerance_percent,
            error=str(exc),
        )
    return classify(computed_total, authoritative, tolerance_percent=tolerance_percent)


__all__ = ["TotalsSource", "classify", "reconcile"]
