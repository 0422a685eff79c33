"""Unit tests for the concentration metrics."""

from __future__ import annotations

import pytest

from donorscope.analysis.metrics import (
    capture_risk,
    compute_metrics,
    median,
    nakamoto_coefficient,
    top_donors,
    top_share,
    whale_count,
)
from donorscope.analysis.models import Checkpoint


def test_median_odd_and_even():
    assert median([10, 20, 30]) == 20
    assert median([10, 20, 30, 40]) == 25
    assert median([30, 10, 20]) == 20
    assert median([]) == 0.0


def test_nakamoto_coefficient_reaches_half():
    # a single donor holding exactly half already reaches the threshold
    assert nakamoto_coefficient([50, 30, 20]) == 1
    assert nakamoto_coefficient([40, 35, 25]) == 2
    assert nakamoto_coefficient([10] * 10) == 5
    assert nakamoto_coefficient([]) == 0


def test_whale_count_has_minimum_of_one():
    assert whale_count(1) == 1
    assert whale_count(99) == 1
    assert whale_count(101) == 2
    assert whale_count(1000) == 10


def test_ratios_match_manual_computation_on_fifteen_donors():
    totals = {f"D{index}|X|CA|00000": float(amount) for index, amount in enumerate(range(150, 0, -10))}
    checkpoint = Checkpoint(
        entity_id="E1",
        source_id="C1",
        cycle=2026,
        transaction_count=15,
        total_amount=1200.0,
        donor_totals=totals,
        amounts=list(totals.values()),
    )

    metrics = compute_metrics(checkpoint)

    assert metrics.unique_donors == 15
    assert metrics.top10_concentration == pytest.approx(1050 / 1200)
    assert metrics.whale_weight == pytest.approx(150 / 1200)
    assert metrics.nakamoto_coefficient == 5
    assert metrics.capture_risk == "high"
    assert 0.0 <= metrics.whale_weight <= metrics.top10_concentration <= 1.0
    assert metrics.mean_amount == pytest.approx(80.0)
    assert metrics.median_amount == 80.0
    assert metrics.min_amount == 10.0
    assert metrics.max_amount == 150.0
    assert len(metrics.top_donors) == 10
    assert metrics.top_donors[0].name == "D0 X"
    assert metrics.top_donors[0].amount == 150.0


def test_top_share_is_zero_without_funding():
    assert top_share([], 10, 0.0) == 0.0


def test_capture_risk_bands():
    assert capture_risk(99) == "high"
    assert capture_risk(100) == "moderate"
    assert capture_risk(999) == "moderate"
    assert capture_risk(1000) == "low"


def test_top_donors_splits_key_into_display_fields():
    donors = top_donors({"JANE|DOE|NM|87501": 500.0, "|SMITH|TX|": 20.0})

    assert donors[0].name == "JANE DOE"
    assert donors[0].state == "NM"
    assert donors[0].zip_code == "87501"
    assert donors[1].name == "SMITH"


def test_compute_metrics_on_empty_checkpoint():
    metrics = compute_metrics(Checkpoint(entity_id="E1", source_id="C1", cycle=2026))

    assert metrics.unique_donors == 0
    assert metrics.mean_amount == 0.0
    assert metrics.top10_concentration == 0.0
    assert metrics.nakamoto_coefficient == 0
