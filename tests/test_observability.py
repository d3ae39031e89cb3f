"""
tests/test_observability.py
Unit tests for structured logging and metrics export.
"""

import json
import logging
from unittest.mock import MagicMock


def test_log_event_emits_json_payload(monkeypatch):
    from ctxengine.app.observability import logging as logging_module

    logger = MagicMock()
    logger.isEnabledFor.return_value = True
    monkeypatch.setattr(logging_module, "setup_logging", lambda: logger)

    logging_module.log_event("active_work_recomputed", workspace_id="ws-1", created=2)

    level, message = logger.log.call_args.args
    payload = json.loads(message)
    assert level == logging.INFO
    assert payload["event"] == "active_work_recomputed"
    assert payload["workspace_id"] == "ws-1"
    assert payload["created"] == 2
    assert "ts" in payload


def test_log_event_respects_level(monkeypatch):
    from ctxengine.app.observability import logging as logging_module

    logger = MagicMock()
    logger.isEnabledFor.return_value = False
    monkeypatch.setattr(logging_module, "setup_logging", lambda: logger)

    logging_module.log_event("noisy", level=logging.DEBUG)

    logger.log.assert_not_called()


def test_metrics_export_and_local_mirror():
    from ctxengine.app.observability.metrics import AppMetrics

    app_metrics = AppMetrics()
    app_metrics.inc("bundles_built_total")
    app_metrics.inc("custom_counter", 3)
    app_metrics.observe("bundle_build_seconds", 0.25)

    body, content_type = app_metrics.export()

    assert "bundles_built_total 1.0" in body
    assert "bundle_build_seconds_count 1.0" in body
    assert content_type.startswith("text/plain")
    assert app_metrics.local.counters["custom_counter"] == 3
    assert list(app_metrics.local.histograms["bundle_build_seconds"]) == [0.25]


def test_local_histogram_mirror_keeps_a_bounded_window():
    from ctxengine.app.observability.metrics import LOCAL_HISTOGRAM_WINDOW, AppMetrics

    app_metrics = AppMetrics()
    for i in range(LOCAL_HISTOGRAM_WINDOW + 25):
        app_metrics.observe("active_work_recompute_seconds", float(i))

    window = app_metrics.local.histograms["active_work_recompute_seconds"]
    assert len(window) == LOCAL_HISTOGRAM_WINDOW
    assert window[0] == 25.0
    assert window[-1] == float(LOCAL_HISTOGRAM_WINDOW + 24)
