from __future__ import annotations

# Ticket tokens and operating periods.
#
# Token format: <DEPT>-<time-fragment>-<sequence>
#   DEPT           first three characters of the department, upper-cased
#   time-fragment  last four digits of the admission time in epoch millis
#   sequence       per-department, per-period counter, zero padded to 3
#
# Example: "CAR-4821-007".

import re
from datetime import date, datetime, tzinfo

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def department_code(department: str) -> str:
    cleaned = _NON_ALNUM.sub("", department)
    if not cleaned:
        raise ValueError("department must contain at least one letter or digit")
    return cleaned[:3].upper()


def time_fragment(now: datetime) -> str:
    millis = int(now.timestamp() * 1000)
    return str(millis)[-4:]


def generate_token(department: str, sequence: int, now: datetime) -> str:
    if sequence < 1:
        raise ValueError("sequence must be >= 1")
    return f"{department_code(department)}-{time_fragment(now)}-{sequence:03d}"


def operating_period(now: datetime) -> date:
    """The operating period is the calendar day of `now`."""
    return now.date()


def period_bounds(period: date, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """Start (inclusive) and end (inclusive) of an operating period."""
    start = datetime(period.year, period.month, period.day, tzinfo=tz)
    end = start.replace(hour=23, minute=59, second=59, microsecond=999999)
    return start, end
