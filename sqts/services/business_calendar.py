"""
Business calendar: date arithmetic for schedule anchors.

Every derived date in the engine goes through ``add_days`` so calendar and
business-day offsets behave identically for FIXED_DATE, SCHEDULE_ITEM,
PROJECT_MILESTONE and COMPLETION anchors.

Rules:
  - Calendar mode (or offset 0): plain ``date + timedelta(days=n)``.
  - Business-day mode: walk one calendar day at a time in the sign of ``n``,
    counting only Monday to Friday, until ``|n|`` business days are consumed.
    Forward and backward walks are symmetric, so
    ``add_days(Friday, 1, True)`` is the next Monday and
    ``add_days(Monday, -1, True)`` is the previous Friday.
  - A business-day walk that starts on a weekend counts the first weekday it
    reaches as day 1.
"""

from datetime import date, timedelta

_ONE_DAY = timedelta(days=1)


def is_business_day(d: date) -> bool:
    """Monday to Friday (no holiday calendar)."""
    return d.weekday() < 5


def add_days(d: date, offset_days: int, use_business_days: bool = False) -> date:
    """Shift ``d`` by ``offset_days`` calendar or business days."""
    if not use_business_days or offset_days == 0:
        return d + timedelta(days=offset_days)

    step = _ONE_DAY if offset_days > 0 else -_ONE_DAY
    remaining = abs(offset_days)
    current = d
    while remaining > 0:
        current += step
        if is_business_day(current):
            remaining -= 1
    return current
