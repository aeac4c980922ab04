"""
Recurrence expansion service.

Expands a stored master event into the occurrences that touch a query window.

Supported model:
- daily / weekly / monthly / yearly, every `interval` units
- weekly rules may pin explicit weekdays (0=Sunday..6=Saturday)
- optional inclusive end bound on occurrence starts

Calendar arithmetic happens in a single caller-supplied timezone using wall
clock fields (an event at 09:00 stays at 09:00 across DST changes). Month and
year steps clamp to the last day of shorter months and are always computed
from the anchor, so Jan 31 monthly yields Feb 28, Mar 31, Apr 30, ...

Uses python-dateutil (relativedelta) for calendar-field arithmetic.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Iterable, Iterator, Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta

from src.services.exceptions import InvalidRecurrenceError

logger = logging.getLogger(__name__)

# Safety limit on candidates examined per master per query
MAX_ITERATIONS = 500

RECURRENCE_ID_FORMAT = "%Y%m%dT%H%M%SZ"
VIRTUAL_ID_SEPARATOR = "_"


class RecurrenceRule(str, Enum):
    """Supported recurrence rules."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


_UNIT_BY_RULE = {
    RecurrenceRule.DAILY: "day",
    RecurrenceRule.WEEKLY: "week",
    RecurrenceRule.MONTHLY: "month",
    RecurrenceRule.YEARLY: "year",
}


@dataclass(frozen=True)
class OccurrenceSpan:
    """Start and end of one generated occurrence (UTC)."""

    start_at: datetime
    end_at: datetime


def as_utc(dt: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# =============================================================================
# Rule parsing and validation
# =============================================================================


def parse_rule(value) -> RecurrenceRule:
    """
    Coerce a stored or user-supplied rule value to RecurrenceRule.

    None maps to RecurrenceRule.NONE.

    Raises:
        InvalidRecurrenceError: If the value is not a supported rule
    """
    if isinstance(value, RecurrenceRule):
        return value
    if value is None:
        return RecurrenceRule.NONE

    try:
        return RecurrenceRule(str(value).strip().lower())
    except ValueError:
        raise InvalidRecurrenceError(f"Unsupported recurrence rule: {value!r}")


def normalize_days_of_week(days: Optional[Iterable[int]]) -> Optional[list[int]]:
    """Return weekday indices sorted and de-duplicated (None stays None)."""
    if days is None:
        return None
    return sorted(set(days))


def validate_recurrence(
    rule,
    interval: int = 1,
    days_of_week: Optional[Iterable[int]] = None,
    end_at: Optional[datetime] = None,
    start_at: Optional[datetime] = None,
) -> RecurrenceRule:
    """
    Validate a recurrence definition at mutation time.

    Args:
        rule: Rule value (string or RecurrenceRule)
        interval: Step between occurrences, must be >= 1
        days_of_week: Weekly-only weekday indices (0=Sunday..6=Saturday)
        end_at: Optional inclusive end bound
        start_at: Master start, used to reject end bounds before the anchor

    Returns:
        The parsed RecurrenceRule

    Raises:
        InvalidRecurrenceError: If any part of the definition is invalid
    """
    parsed = parse_rule(rule)

    if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
        raise InvalidRecurrenceError(
            f"Recurrence interval must be a positive integer, got {interval!r}"
        )

    if days_of_week is not None:
        days = list(days_of_week)
        if parsed is not RecurrenceRule.WEEKLY:
            raise InvalidRecurrenceError("days_of_week only applies to weekly recurrence")
        if not days:
            raise InvalidRecurrenceError("Weekly recurrence needs at least one weekday")
        for day in days:
            if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
                raise InvalidRecurrenceError(
                    f"Weekday index must be 0 (Sunday) to 6 (Saturday), got {day!r}"
                )

    if parsed is not RecurrenceRule.NONE and end_at is not None and start_at is not None:
        if as_utc(end_at) < as_utc(start_at):
            raise InvalidRecurrenceError("Recurrence ends before the event starts")

    return parsed


# =============================================================================
# Calendar arithmetic
# =============================================================================


def add_calendar_unit(
    timestamp: datetime,
    unit: str,
    amount: int,
    tz: tzinfo = timezone.utc,
) -> datetime:
    """
    Add calendar units to a timestamp using wall-clock fields in `tz`.

    Args:
        timestamp: Aware datetime (naive values are taken as UTC)
        unit: 'day', 'week', 'month' or 'year'
        amount: Number of units (may be negative)
        tz: Calendar timezone

    Returns:
        Aware UTC datetime. Month/year results clamp to the end of short months.
    """
    if unit == "day":
        delta = relativedelta(days=amount)
    elif unit == "week":
        delta = relativedelta(weeks=amount)
    elif unit == "month":
        delta = relativedelta(months=amount)
    elif unit == "year":
        delta = relativedelta(years=amount)
    else:
        raise ValueError(f"Unknown calendar unit: {unit}")

    local = as_utc(timestamp).astimezone(tz)
    return (local + delta).astimezone(timezone.utc)


def sunday_index(day) -> int:
    """Weekday index with 0=Sunday..6=Saturday."""
    return (day.weekday() + 1) % 7


def _elapsed_units(anchor: datetime, moment: datetime, unit: str, tz: tzinfo) -> int:
    """Whole calendar units between the local dates of two instants."""
    a = anchor.astimezone(tz)
    m = moment.astimezone(tz)

    if unit == "day":
        return (m.date() - a.date()).days
    if unit == "week":
        return (m.date() - a.date()).days // 7
    if unit == "month":
        return (m.year - a.year) * 12 + (m.month - a.month)
    return m.year - a.year


def _stepped_candidates(
    anchor: datetime,
    rule: RecurrenceRule,
    interval: int,
    lower: datetime,
    tz: tzinfo,
) -> Iterator[datetime]:
    unit = _UNIT_BY_RULE[rule]

    # Start one step before the window; every earlier candidate lies on an
    # earlier local date (or month/year) than the window's lower bound.
    step = max(0, _elapsed_units(anchor, lower, unit, tz) // interval - 1)

    while True:
        yield add_calendar_unit(anchor, unit, step * interval, tz)
        step += 1


def _weekday_candidates(
    anchor: datetime,
    interval: int,
    days_of_week: list[int],
    lower: datetime,
    tz: tzinfo,
) -> Iterator[datetime]:
    local_anchor = anchor.astimezone(tz)
    week_start = local_anchor.date() - timedelta(days=sunday_index(local_anchor))
    time_of_day = local_anchor.time()

    elapsed_weeks = (lower.astimezone(tz).date() - week_start).days // 7
    week = max(0, elapsed_weeks // interval - 1) * interval

    while True:
        for offset in days_of_week:
            day = week_start + timedelta(days=week * 7 + offset)
            start = datetime.combine(day, time_of_day, tzinfo=tz).astimezone(timezone.utc)
            # Recurrence never produces occurrences before its own anchor
            if start < anchor:
                continue
            yield start
        week += interval


def generate_occurrences(
    master_start: datetime,
    master_end: datetime,
    rule,
    interval: int,
    recurrence_end: Optional[datetime],
    range_start: datetime,
    range_end: datetime,
    days_of_week: Optional[Iterable[int]] = None,
    tz: tzinfo = timezone.utc,
    max_iterations: int = MAX_ITERATIONS,
) -> list[OccurrenceSpan]:
    """
    Expand a recurring master into occurrences overlapping a query range.

    Candidates are emitted when their start lies in
    [range_start - duration, min(recurrence_end, range_end)], so occurrences
    that begin before the range but run into it are included. Each occurrence
    keeps the master's duration.

    Args:
        master_start: Anchor start of the master event
        master_end: Anchor end of the master event
        rule: daily / weekly / monthly / yearly
        interval: Step in units of the rule (>= 1)
        recurrence_end: Inclusive upper bound for starts, or None
        range_start: Query range start
        range_end: Query range end (inclusive)
        days_of_week: Weekly only, weekday indices 0=Sunday..6=Saturday
        tz: Calendar timezone for wall-clock arithmetic
        max_iterations: Safety cap on candidates examined

    Returns:
        List of OccurrenceSpan in ascending start order

    Raises:
        InvalidRecurrenceError: For non-recurring or unsupported rules,
            non-positive intervals, or bad weekday indices
    """
    parsed = parse_rule(rule)
    if parsed is RecurrenceRule.NONE:
        raise InvalidRecurrenceError("Event is not recurring")
    if interval is None or interval < 1:
        raise InvalidRecurrenceError(
            f"Recurrence interval must be a positive integer, got {interval!r}"
        )

    master_start = as_utc(master_start)
    duration = as_utc(master_end) - master_start
    range_start = as_utc(range_start)
    range_end = as_utc(range_end)

    upper = range_end
    if recurrence_end is not None:
        upper = min(as_utc(recurrence_end), range_end)
    lower = range_start - duration

    days = normalize_days_of_week(days_of_week)
    if parsed is RecurrenceRule.WEEKLY and days:
        if days[0] < 0 or days[-1] > 6:
            raise InvalidRecurrenceError(f"Invalid weekday indices: {days}")
        candidates = _weekday_candidates(master_start, interval, days, lower, tz)
    else:
        candidates = _stepped_candidates(master_start, parsed, interval, lower, tz)

    occurrences = []
    for examined, start in enumerate(candidates):
        if start > upper:
            break
        # Only warn when a candidate past the cap is still in bounds
        if examined == max_iterations:
            logger.warning(
                f"Recurrence expansion hit the iteration cap ({max_iterations}) "
                f"for rule={parsed.value} interval={interval} "
                f"range={range_start.isoformat()}..{range_end.isoformat()}; "
                f"returning {len(occurrences)} occurrences"
            )
            break
        if start >= lower:
            occurrences.append(OccurrenceSpan(start_at=start, end_at=start + duration))

    return occurrences


def shift_instance_date(
    instance_date: datetime,
    old_anchor: datetime,
    new_anchor: datetime,
    rule,
    days_of_week: Optional[Iterable[int]] = None,
    tz: tzinfo = timezone.utc,
) -> datetime:
    """
    Map an occurrence onto the same occurrence after its master's start moves.

    Stepped rules keep the occurrence's position in the series: the k-th
    step from the old anchor becomes the k-th step from the new anchor, with
    the same month-end clamping generation uses. Weekday-set rules keep the
    occurrence's local date and take the new anchor's time of day.

    Args:
        instance_date: Original start of the occurrence under the old anchor
        old_anchor: Master start before the change
        new_anchor: Master start after the change
        rule: Recurrence rule (unchanged by the move)
        days_of_week: Weekly weekday set, if any
        tz: Calendar timezone

    Returns:
        Aware UTC start of the occurrence under the new anchor
    """
    parsed = parse_rule(rule)
    if parsed is RecurrenceRule.NONE:
        raise InvalidRecurrenceError("Event is not recurring")

    instance_date = as_utc(instance_date)
    old_anchor = as_utc(old_anchor)
    new_anchor = as_utc(new_anchor)

    if parsed is RecurrenceRule.WEEKLY and normalize_days_of_week(days_of_week):
        day = instance_date.astimezone(tz).date()
        time_of_day = new_anchor.astimezone(tz).time()
        return datetime.combine(day, time_of_day, tzinfo=tz).astimezone(timezone.utc)

    unit = _UNIT_BY_RULE[parsed]
    elapsed = _elapsed_units(old_anchor, instance_date, unit, tz)
    return add_calendar_unit(new_anchor, unit, elapsed, tz)


# =============================================================================
# Occurrence identifiers
# =============================================================================


def format_recurrence_id(dt: datetime) -> str:
    """
    Format an instant as a recurrence ID.

    Args:
        dt: Datetime to format (converted to UTC)

    Returns:
        String in YYYYMMDDTHHMMSSZ format
    """
    return as_utc(dt).strftime(RECURRENCE_ID_FORMAT)


def parse_recurrence_id(recurrence_id: str) -> Optional[datetime]:
    """
    Parse a recurrence ID back to an aware UTC datetime.

    Args:
        recurrence_id: String in YYYYMMDDTHHMMSSZ format

    Returns:
        Datetime or None if parsing fails
    """
    try:
        return datetime.strptime(recurrence_id, RECURRENCE_ID_FORMAT).replace(
            tzinfo=timezone.utc
        )
    except (ValueError, TypeError):
        return None


def format_virtual_id(master_id: UUID, instance_date: datetime) -> str:
    """
    Build the synthetic id of a virtual occurrence.

    The id is stable for a given (master, instance) pair and is never
    persisted. Use parse_virtual_id to decode it.
    """
    return f"{master_id}{VIRTUAL_ID_SEPARATOR}{format_recurrence_id(instance_date)}"


def parse_virtual_id(occurrence_id: str) -> Optional[tuple[UUID, datetime]]:
    """
    Decode a virtual occurrence id.

    Returns:
        (master_id, instance_date) or None if the id is not a virtual id
    """
    master_part, separator, stamp = occurrence_id.rpartition(VIRTUAL_ID_SEPARATOR)
    if not separator:
        return None

    try:
        master_id = UUID(master_part)
    except ValueError:
        return None

    instance_date = parse_recurrence_id(stamp)
    if instance_date is None:
        return None

    return master_id, instance_date
