"""Cron / frequency evaluation for workflow schedules.

``next_fire_time`` is a pure function of (spec, timezone, reference):
no clock reads, no I/O. Callers pass the *intended* run time as the
reference so polling latency never accumulates into the schedule.
"""

import calendar
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from core.constants import Frequency
from core.exceptions import InvalidScheduleSpec
from core.utils import ensure_utc, truncate_to_minute

CRON_FIELD_COUNT = 5

# DST gaps can make a wall-clock offset land on or before the reference
_MAX_ADVANCE_STEPS = 4


class ScheduleSpec(BaseModel):
    """Schedule attached to a TRIGGER node.

    Exactly one of ``cron`` / ``frequency`` drives the next fire time;
    ``cron`` wins when both are set.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cron: Optional[str] = None
    frequency: Optional[str] = None
    timezone: str = "UTC"
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    is_active: bool = True


def get_zone(name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA timezone name, raising InvalidScheduleSpec."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidScheduleSpec(f"Unknown timezone: {name!r}") from e


def _validate_cron(expression: str) -> str:
    expression = " ".join(expression.split())
    if len(expression.split(" ")) != CRON_FIELD_COUNT:
        raise InvalidScheduleSpec(
            f"Cron expression must have {CRON_FIELD_COUNT} fields: {expression!r}"
        )
    if not croniter.is_valid(expression):
        raise InvalidScheduleSpec(f"Invalid cron expression: {expression!r}")
    return expression


def _validate_frequency(frequency: str) -> Frequency:
    try:
        return Frequency(frequency.strip().lower())
    except ValueError as e:
        allowed = ", ".join(f.value for f in Frequency)
        raise InvalidScheduleSpec(
            f"Unknown frequency {frequency!r} (expected one of: {allowed})"
        ) from e


def validate_schedule_spec(spec: ScheduleSpec) -> None:
    """Check cron / frequency / timezone without computing anything."""
    if not spec.cron and not spec.frequency:
        raise InvalidScheduleSpec("Schedule needs either a cron expression or a frequency")
    get_zone(spec.timezone)
    if spec.cron:
        _validate_cron(spec.cron)
    else:
        _validate_frequency(spec.frequency)
    if spec.start_at and spec.end_at and ensure_utc(spec.end_at) < ensure_utc(spec.start_at):
        raise InvalidScheduleSpec("Schedule end_at is before start_at")


def _add_months(local: datetime, months: int) -> datetime:
    month_index = local.month - 1 + months
    year = local.year + month_index // 12
    month = month_index % 12 + 1
    day = min(local.day, calendar.monthrange(year, month)[1])
    return local.replace(year=year, month=month, day=day)


def _advance(local: datetime, frequency: Frequency, zone: ZoneInfo) -> datetime:
    """One calendar step in wall-clock time, re-attached to ``zone``."""
    naive = local.replace(tzinfo=None)
    if frequency == Frequency.HOURLY:
        # hourly steps are absolute, not wall-clock
        return (local.astimezone(dt_timezone.utc) + timedelta(hours=1)).astimezone(zone)
    if frequency == Frequency.DAILY:
        naive = naive + timedelta(days=1)
    elif frequency == Frequency.WEEKLY:
        naive = naive + timedelta(weeks=1)
    elif frequency == Frequency.MONTHLY:
        naive = _add_months(naive, 1)
    elif frequency == Frequency.YEARLY:
        naive = _add_months(naive, 12)
    return naive.replace(tzinfo=zone)


def next_fire_time(
    spec: ScheduleSpec,
    timezone: Optional[str],
    reference_time: datetime,
) -> datetime:
    """Earliest fire time strictly after ``reference_time``.

    Args:
        spec: cron or frequency (other fields are ignored here)
        timezone: IANA zone the expression is evaluated in
        reference_time: Anchor instant; naive values are read as UTC

    Returns:
        Aware UTC datetime

    Raises:
        InvalidScheduleSpec: neither field set, malformed cron, unknown
            frequency or unknown timezone
    """
    if not spec.cron and not spec.frequency:
        raise InvalidScheduleSpec("Schedule needs either a cron expression or a frequency")

    zone = get_zone(timezone)
    reference = ensure_utc(reference_time)

    if spec.cron:
        expression = _validate_cron(spec.cron)
        itr = croniter(expression, reference.astimezone(zone))
        candidate = itr.get_next(datetime)
        while ensure_utc(candidate) <= reference:
            candidate = itr.get_next(datetime)
        return ensure_utc(candidate)

    frequency = _validate_frequency(spec.frequency)
    local = truncate_to_minute(reference).astimezone(zone)
    candidate = _advance(local, frequency, zone)
    steps = 1
    while ensure_utc(candidate) <= reference and steps < _MAX_ADVANCE_STEPS:
        candidate = _advance(candidate, frequency, zone)
        steps += 1
    return ensure_utc(candidate)


def first_fire_time(
    spec: ScheduleSpec,
    reference_time: datetime,
) -> Optional[datetime]:
    """Next fire time honouring the ``[start_at, end_at]`` window.

    A future ``start_at`` moves the anchor: cron schedules fire at the
    first match at or after it, frequency schedules fire at ``start_at``
    itself. Returns None once the window has closed.
    """
    validate_schedule_spec(spec)
    reference = ensure_utc(reference_time)
    start_at = ensure_utc(spec.start_at) if spec.start_at else None
    end_at = ensure_utc(spec.end_at) if spec.end_at else None
    if end_at is not None and end_at < reference:
        return None

    if start_at is not None and start_at > reference:
        if spec.cron:
            candidate = next_fire_time(spec, spec.timezone, start_at - timedelta(microseconds=1))
            while candidate < start_at:
                candidate = next_fire_time(spec, spec.timezone, candidate)
        else:
            candidate = start_at
    else:
        candidate = next_fire_time(spec, spec.timezone, reference)

    if end_at is not None and candidate > end_at:
        return None
    return candidate
