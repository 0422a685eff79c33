"""Concentration metrics computed once when an entity's collection completes."""

from __future__ import annotations

import math
from typing import Mapping, Sequence

from donorscope.analysis.aggregator import KEY_SEPARATOR
from donorscope.analysis.models import CaptureRisk, Checkpoint, ConcentrationMetrics, TopDonor

TOP_DONOR_LIMIT = 10
WHALE_FRACTION = 0.01


def median(values: Sequence[float]) -> float:
    """Middle element for odd length, mean of the two middle elements for even length."""

    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def top_share(sorted_totals: Sequence[float], count: int, total_amount: float) -> float:
    """Share of ``total_amount`` held by the first ``count`` of ``sorted_totals`` (descending)."""

    if total_amount <= 0:
        return 0.0
    share = sum(sorted_totals[:count]) / total_amount
    return min(max(share, 0.0), 1.0)


def whale_count(donor_count: int) -> int:
    return max(1, math.ceil(donor_count * WHALE_FRACTION))


def nakamoto_coefficient(sorted_totals: Sequence[float]) -> int:
    """Smallest number of top donors whose cumulative total reaches half of all funding."""

    total = sum(sorted_totals)
    if total <= 0:
        return 0
    half = total / 2
    cumulative = 0.0
    for index, amount in enumerate(sorted_totals, start=1):
        cumulative += amount
        if cumulative >= half:
            return index
    return len(sorted_totals)


def capture_risk(coefficient: int) -> CaptureRisk:
    if coefficient < 100:
        return "high"
    if coefficient < 1000:
        return "moderate"
    return "low"


def top_donors(donor_totals: Mapping[str, float], limit: int = TOP_DONOR_LIMIT) -> list[TopDonor]:
    ranked = sorted(donor_totals.items(), key=lambda item: (-item[1], item[0]))[:limit]
    donors = []
    for key, amount in ranked:
        first, last, state, zip_code = (key.split(KEY_SEPARATOR) + ["", "", "", ""])[:4]
        donors.append(
            TopDonor(name=" ".join(part for part in (first, last) if part), state=state, zip_code=zip_code, amount=amount)
        )
    return donors


def compute_metrics(checkpoint: Checkpoint) -> ConcentrationMetrics:
    """Compute every headline metric from a completed checkpoint."""

    sorted_totals = sorted(checkpoint.donor_totals.values(), reverse=True)
    amounts = checkpoint.amounts
    total_amount = checkpoint.total_amount
    coefficient = nakamoto_coefficient(sorted_totals)
    return ConcentrationMetrics(
        unique_donors=len(sorted_totals),
        transaction_count=checkpoint.transaction_count,
        total_amount=total_amount,
        mean_amount=(total_amount / len(amounts)) if amounts else 0.0,
        median_amount=median(amounts),
        min_amount=min(amounts) if amounts else 0.0,
        max_amount=max(amounts) if amounts else 0.0,
        top10_concentration=top_share(sorted_totals, TOP_DONOR_LIMIT, total_amount),
        whale_weight=top_share(sorted_totals, whale_count(len(sorted_totals)), total_amount),
        nakamoto_coefficient=coefficient,
        capture_risk=capture_risk(coefficient),
        top_donors=top_donors(checkpoint.donor_totals),
    )


__all__ = [
    "capture_risk",
    "compute_metrics",
    "median",
    "nakamoto_coefficient",
    "top_donors",
    "top_share",
    "whale_count",
]
