"""Unit tests for structured events and StatsD formatting."""

from __future__ import annotations

import json
import logging

from donorscope.observability import Observability, _CompositeMetricsBackend, _StatsdBackend


class _RecordingBackend:
    def __init__(self):
        self.calls = []

    def increment(self, metric, *, value, tags):
        self.calls.append(("increment", metric, value, tags))

    def record_timing(self, metric, *, value_ms, tags):
        self.calls.append(("timing", metric, value_ms, tags))


def test_emit_event_writes_json_and_redacts_secrets(make_settings, caplog):
    settings = make_settings()
    observability = Observability(settings=settings, component="engine")
    caplog.set_level(logging.INFO, logger="donorscope.observability")

    observability.emit_event("chunk_started", entity_id="E1", api_key="leak", extra={"token": "leak"})

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "chunk_started"
    assert payload["component"] == "engine"
    assert payload["service"] == settings.observability.service_name
    assert payload["entity_id"] == "E1"
    assert payload["api_key"] == "***"
    assert payload["extra"]["token"] == "***"
    assert "leak" not in caplog.text


def test_metrics_dispatch_to_backends(make_settings):
    backend = _RecordingBackend()
    observability = Observability(
        settings=make_settings(),
        metrics_backend=_CompositeMetricsBackend([backend]),
    )

    observability.increment("analysis.pages_fetched", value=3, tags={"cycle": 2026, "empty": None})
    observability.record_timing("analysis.chunk_ms", 12.5)

    assert backend.calls == [
        ("increment", "analysis.pages_fetched", 3, {"cycle": "2026"}),
        ("timing", "analysis.chunk_ms", 12.5, None),
    ]


def test_metrics_are_noop_without_backend(make_settings):
    observability = Observability(settings=make_settings())

    observability.increment("analysis.entities_completed")
    observability.record_timing("analysis.chunk_ms", 1.0)


def test_statsd_payload_format():
    backend = _StatsdBackend(host="127.0.0.1", port=8125, prefix="donorscope")

    assert backend.format_payload("analysis.chunk_ms", 12.5, metric_type="ms", tags=None) == (
        "donorscope.analysis.chunk_ms:12.5|ms"
    )
    assert backend.format_payload("analysis.pages", 2.0, metric_type="c", tags={"status": "ok", "cycle": "2026"}) == (
        "donorscope.analysis.pages:2|c|#cycle:2026,status:ok"
    )
