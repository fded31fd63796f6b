# notifier/core/schedule.py
"""Reschedule policy: when may a subscription fire again after a delivery."""
from __future__ import annotations

from datetime import datetime, timedelta

from notifier.core.domain import Frequency

_INTERVALS: dict[Frequency, timedelta] = {
    Frequency.LIVE: timedelta(0),
    Frequency.HOURLY: timedelta(hours=1),
    Frequency.DAILY: timedelta(days=1),
}


def next_fire_time(frequency: Frequency | str, dispatched_at: datetime) -> datetime:
    """
    Return the next eligible fire time for a successful dispatch at ``dispatched_at``.

    Raises:
        ValueError: if ``frequency`` is not a known Frequency value
    """
    return dispatched_at + _INTERVALS[Frequency(frequency)]
