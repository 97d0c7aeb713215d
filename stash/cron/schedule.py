"""
Cron Schedules
==============

Parser for the expressions that drive the expiry sweeper.

Accepted forms:
  - 5 fields: ``min hour dom mon dow``
  - 6 fields: ``sec min hour dom mon dow`` (seconds first)

Each field takes ``*``, lists (``1,15``), ranges (``9-17``) and steps
(``*/5``, ``10-50/10``). The day fields also accept ``?`` as ``*``.
Day-of-week runs 0-7 with both 0 and 7 meaning Sunday. If both day fields
are restricted, a date matches when either one does.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

DEFAULT_CLEANUP_CRON = "0 * * * * *"  # second 0 of every minute

# Leap days can be eight years apart (2096 -> 2104).
_SEARCH_WINDOW = timedelta(days=366 * 8)


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> set[int]:
    """Parse a single cron field into a set of valid integers."""
    values = set()
    for part in field_str.split(","):
        if not part:
            raise ValueError(f"Empty list item in cron field {field_str!r}")
        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            step = int(step_str)
            if step < 1:
                raise ValueError(f"Cron step must be positive: {field_str!r}")

        if part in ("*", "?"):
            lo, hi = min_val, max_val
        elif "-" in part:
            lo_str, hi_str = part.split("-", 1)
            lo, hi = int(lo_str), int(hi_str)
        else:
            lo = int(part)
            hi = max_val if step > 1 else lo

        if lo < min_val or hi > max_val or lo > hi:
            raise ValueError(
                f"Cron field {field_str!r} out of range {min_val}-{max_val}"
            )
        values.update(range(lo, hi + 1, step))
    return values


class CronSchedule:
    """A parsed cron expression."""

    def __init__(self, expr: str):
        fields = (expr or "").strip().split()
        if len(fields) == 5:
            fields = ["0", *fields]
        elif len(fields) != 6:
            raise ValueError(
                f"Cron expression must have 5 or 6 fields, got {len(fields)}: {expr!r}"
            )
        self.expr = expr.strip()

        second, minute, hour, dom, month, dow = fields
        try:
            self.seconds = sorted(_parse_cron_field(second, 0, 59))
            self.minutes = _parse_cron_field(minute, 0, 59)
            self.hours = _parse_cron_field(hour, 0, 23)
            self.days = _parse_cron_field(dom, 1, 31)
            self.months = _parse_cron_field(month, 1, 12)
            weekdays = _parse_cron_field(dow, 0, 7)
        except ValueError as e:
            raise ValueError(f"Invalid cron expression {expr!r}: {e}") from e

        # Normalise Sunday to 0
        self.weekdays = {d % 7 for d in weekdays}
        self._dom_any = dom in ("*", "?")
        self._dow_any = dow in ("*", "?")

    def __repr__(self) -> str:
        return f"CronSchedule({self.expr!r})"

    def _day_matches(self, dt: datetime) -> bool:
        dom_ok = dt.day in self.days
        dow_ok = (dt.weekday() + 1) % 7 in self.weekdays  # Python: Mon=0 → cron: Sun=0
        if self._dom_any and self._dow_any:
            return True
        if self._dom_any:
            return dow_ok
        if self._dow_any:
            return dom_ok
        return dom_ok or dow_ok

    def _minute_matches(self, dt: datetime) -> bool:
        return (
            dt.minute in self.minutes
            and dt.hour in self.hours
            and dt.month in self.months
            and self._day_matches(dt)
        )

    def matches(self, dt: datetime) -> bool:
        return dt.second in self.seconds and self._minute_matches(dt)

    def next_after(self, after: datetime) -> datetime:
        """Find the next matching time strictly after ``after``.

        Searches up to eight years ahead; raises ValueError if the expression
        never fires in that window (e.g. February 30th).
        """
        start = after.replace(microsecond=0) + timedelta(seconds=1)
        dt = start.replace(second=0)
        limit = after + _SEARCH_WINDOW
        while dt < limit:
            if dt.month not in self.months or not self._day_matches(dt):
                dt = (dt + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if dt.hour not in self.hours:
                dt = (dt + timedelta(hours=1)).replace(minute=0)
                continue
            if dt.minute in self.minutes:
                for second in self.seconds:
                    candidate = dt.replace(second=second)
                    if candidate >= start:
                        return candidate
            dt += timedelta(minutes=1)
        raise ValueError(f"No matching time found for cron expression: {self.expr}")


def parse_schedule(expr: str, now: datetime | None = None) -> CronSchedule:
    """Parse ``expr`` and check that it fires at least once after ``now``.

    Raises ValueError for malformed expressions and for ones that can never
    fire.
    """
    schedule = CronSchedule(expr)
    schedule.next_after(now or datetime.now(timezone.utc))
    return schedule
