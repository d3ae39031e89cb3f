"""
Celery beat schedule helpers.
"""

from __future__ import annotations


NIGHTLY_SECONDS = 24 * 60 * 60


def build_beat_schedule() -> dict:
    return {
        "active-work-sweep-nightly": {
            "task": "active_work.nightly_sweep",
            "schedule": NIGHTLY_SECONDS,
        },
    }
