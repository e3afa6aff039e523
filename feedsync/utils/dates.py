"""Run-date helpers for report names and the beat schedule."""

from __future__ import annotations

import os
from datetime import date

import pendulum

DEFAULT_TZ = "Europe/Istanbul"


def timezone_name() -> str:
    """``TIMEZONE`` from the environment; blank or unknown names fall back to Istanbul."""
    name = os.environ.get("TIMEZONE", "").strip()
    if name and name in pendulum.timezones():
        return name
    return DEFAULT_TZ


def today_in_tz(tz_name: str | None = None) -> date:
    return pendulum.today(tz=tz_name or timezone_name()).date()


def format_date(value: date) -> str:
    return value.isoformat()
