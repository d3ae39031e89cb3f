"""
Metrics collection backed by the Prometheus client, with an in-process mirror.
"""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from typing import Deque, Dict

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest


LOCAL_HISTOGRAM_WINDOW = 1000


class _LocalMetrics:
    def __init__(self, window: int = LOCAL_HISTOGRAM_WINDOW):
        self._lock = threading.Lock()
        self.counters: Dict[str, float] = defaultdict(float)
        self.histograms: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=window))

    def inc(self, name: str, amount: float = 1.0):
        with self._lock:
            self.counters[name] += amount

    def observe(self, name: str, value: float):
        with self._lock:
            self.histograms[name].append(float(value))

    def reset(self):
        with self._lock:
            self.counters.clear()
            self.histograms.clear()


class AppMetrics:
    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.local = _LocalMetrics()
        self._counters = {
            "bundles_built_total": Counter(
                "bundles_built_total", "Context bundles assembled", registry=self.registry
            ),
            "rules_selected_total": Counter(
                "rules_selected_total", "Rules included in a bundle", registry=self.registry
            ),
            "rules_dropped_total": Counter(
                "rules_dropped_total", "Enabled rules omitted from a bundle", registry=self.registry
            ),
            "active_work_recomputes_total": Counter(
                "active_work_recomputes_total", "Per-project active-work recomputes", registry=self.registry
            ),
            "active_work_events_total": Counter(
                "active_work_events_total", "Active-work lifecycle events written", registry=self.registry
            ),
            "retrieval_provider_failures_total": Counter(
                "retrieval_provider_failures_total", "Retrieval provider failures", registry=self.registry
            ),
            "persona_fallbacks_total": Counter(
                "persona_fallbacks_total", "Persona recommendations that fell back to neutral", registry=self.registry
            ),
        }
        self._histograms = {
            "bundle_build_seconds": Histogram(
                "bundle_build_seconds", "Context bundle assembly latency", registry=self.registry
            ),
            "active_work_recompute_seconds": Histogram(
                "active_work_recompute_seconds", "Active-work recompute latency", registry=self.registry
            ),
            "snapshot_load_seconds": Histogram(
                "snapshot_load_seconds", "Project snapshot input fetch latency", registry=self.registry
            ),
        }

    def inc(self, name: str, amount: float = 1.0):
        self.local.inc(name, amount)
        counter = self._counters.get(name)
        if counter is not None and amount > 0:
            counter.inc(amount)

    def observe(self, name: str, value: float):
        self.local.observe(name, value)
        histogram = self._histograms.get(name)
        if histogram is not None:
            histogram.observe(value)

    def export(self) -> tuple[str, str]:
        return generate_latest(self.registry).decode("utf-8"), CONTENT_TYPE_LATEST


metrics = AppMetrics()
