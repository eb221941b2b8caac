# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Cron expression parser and next-fire-time calculator.

Supports standard 5-field cron expressions:
    minute hour day month weekday

Each field supports:
    *           any value
    N           specific value (e.g. 5)
    N,M         list of values (e.g. 1,15)
    N-M         range of values (e.g. 1-5)
    */N         step values (e.g. */15)
    N-M/S, N/S  stepped ranges (e.g. 0-30/10, 5/15)

Month (``jan``..``dec``) and weekday (``sun``..``sat``) names are accepted,
and weekday ``7`` is an alias for Sunday.  When both the day-of-month and
day-of-week fields are restricted a day matches if *either* field matches,
as in Vixie cron.

Expressions are evaluated on the wall clock of an IANA timezone and the
result is always returned as an aware UTC datetime.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from diviner.core.constants import DEFAULT_TIMEZONE
from diviner.core.exceptions import InvalidCronExpression

_MONTH_NAMES = {
    name: idx
    for idx, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun",
         "jul", "aug", "sep", "oct", "nov", "dec"],
        start=1,
    )
}
_WEEKDAY_NAMES = {
    name: idx
    for idx, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])
}

# Search horizon; covers leap-day-only schedules such as "0 0 29 2 *".
_MAX_LOOKAHEAD = timedelta(days=366 * 4 + 1)


@dataclass(frozen=True, slots=True)
class CronSchedule:
    """A parsed cron expression."""

    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]  # 0=Sunday ... 6=Saturday
    any_day: bool
    any_weekday: bool

    def matches_day(self, moment: datetime) -> bool:
        dom = moment.day in self.days
        dow = (moment.weekday() + 1) % 7 in self.weekdays
        if not self.any_day and not self.any_weekday:
            return dom or dow
        return dom and dow


def _parse_value(token: str, names: dict[str, int] | None) -> int:
    if names and token.lower() in names:
        return names[token.lower()]
    try:
        return int(token)
    except ValueError as exc:
        raise InvalidCronExpression(f"Invalid value: {token}") from exc


def _parse_field(
    field: str,
    min_val: int,
    max_val: int,
    names: dict[str, int] | None = None,
) -> frozenset[int]:
    """Parse a single cron field into a set of matching integer values."""
    values: set[int] = set()

    for part in field.split(","):
        part = part.strip()
        if not part:
            raise InvalidCronExpression(f"Empty list element in field: {field!r}")

        step = 1
        if "/" in part:
            base, _, step_str = part.partition("/")
            try:
                step = int(step_str)
            except ValueError as exc:
                raise InvalidCronExpression(f"Invalid step value: {part}") from exc
            if step <= 0:
                raise InvalidCronExpression(f"Step must be positive: {part}")
        else:
            base = part

        if base == "*":
            lo_val, hi_val = min_val, max_val
        elif "-" in base:
            lo, _, hi = base.partition("-")
            lo_val, hi_val = _parse_value(lo, names), _parse_value(hi, names)
            if lo_val < min_val or hi_val > max_val or lo_val > hi_val:
                raise InvalidCronExpression(
                    f"Range {part} out of bounds ({min_val}-{max_val})"
                )
        else:
            lo_val = _parse_value(base, names)
            if lo_val < min_val or lo_val > max_val:
                raise InvalidCronExpression(
                    f"Value {lo_val} out of bounds ({min_val}-{max_val})"
                )
            # "5/15" means "every 15 starting at 5"; a bare "5" is a single value.
            hi_val = max_val if "/" in part else lo_val

        values.update(range(lo_val, hi_val + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSchedule:
    """Parse a 5-field cron expression.

    Raises:
        InvalidCronExpression: If the expression is malformed.
    """
    if not isinstance(expression, str):
        raise InvalidCronExpression(f"Cron expression must be a string, got {expression!r}")
    parts = expression.strip().split()
    if len(parts) != 5:
        raise InvalidCronExpression(
            f"Cron expression must have exactly 5 fields, got {len(parts)}: {expression!r}"
        )

    weekdays = _parse_field(parts[4], 0, 7, _WEEKDAY_NAMES)
    if 7 in weekdays:
        weekdays = (weekdays - {7}) | {0}

    return CronSchedule(
        minutes=_parse_field(parts[0], 0, 59),
        hours=_parse_field(parts[1], 0, 23),
        days=_parse_field(parts[2], 1, 31),
        months=_parse_field(parts[3], 1, 12, _MONTH_NAMES),
        weekdays=weekdays,
        any_day=parts[2].startswith("*"),
        any_weekday=parts[4].startswith("*"),
    )


def resolve_timezone(name: str | None) -> tzinfo:
    """Return the :class:`ZoneInfo` for an IANA name (``None`` means UTC)."""
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidCronExpression(f"Unknown timezone: {name!r}") from exc


def next_fire_time(
    expression: str,
    timezone: str | None = DEFAULT_TIMEZONE,
    after: datetime | None = None,
) -> datetime:
    """Return the first instant strictly after *after* matching *expression*.

    *expression* is interpreted on the wall clock of *timezone*.  Naive
    *after* values are taken to be UTC; ``None`` means now.  The result is an
    aware UTC datetime with seconds and microseconds zeroed.

    Raises:
        InvalidCronExpression: For malformed expressions, unknown timezones,
            or expressions that never fire (e.g. ``0 0 31 2 *``).
    """
    schedule = parse_cron(expression)
    tz = resolve_timezone(timezone)

    if after is None:
        after = datetime.now(UTC)
    elif after.tzinfo is None:
        after = after.replace(tzinfo=UTC)

    # Walk naive local wall-clock time, skipping whole months/days/hours
    # whenever a coarser field cannot match.
    local = after.astimezone(tz).replace(tzinfo=None, second=0, microsecond=0)
    local += timedelta(minutes=1)
    horizon = local + _MAX_LOOKAHEAD

    while local <= horizon:
        if local.month not in schedule.months:
            local = _start_of_next_month(local)
            continue
        if not schedule.matches_day(local):
            local = local.replace(hour=0, minute=0) + timedelta(days=1)
            continue
        if local.hour not in schedule.hours:
            local = local.replace(minute=0) + timedelta(hours=1)
            continue
        if local.minute not in schedule.minutes:
            later = [m for m in schedule.minutes if m > local.minute]
            if later:
                local = local.replace(minute=min(later))
            else:
                local = local.replace(minute=0) + timedelta(hours=1)
            continue

        candidate = local.replace(tzinfo=tz).astimezone(UTC)
        if candidate > after:
            return candidate
        local += timedelta(minutes=1)

    raise InvalidCronExpression(
        f"Could not find next run for cron expression: {expression!r}"
    )


def validate_cron(expression: str, timezone: str | None = DEFAULT_TIMEZONE) -> None:
    """Raise :class:`InvalidCronExpression` unless the schedule can fire."""
    next_fire_time(expression, timezone, datetime.now(UTC))


def _start_of_next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return moment.replace(year=moment.year + 1, month=1, day=1, hour=0, minute=0)
    return moment.replace(month=moment.month + 1, day=1, hour=0, minute=0)
