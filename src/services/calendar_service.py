"""
Calendar query service.

Assembles the unified occurrence list for a group and date range:
1. regular events overlapping the range
2. recurring masters that may produce occurrences in the range
3. exception/tombstone rows of those masters
4. attendees for all of the above in one batched lookup
5. per master: generate occurrences, then resolve exceptions

A master whose recurrence cannot be expanded is skipped and logged; the rest
of the range is still returned.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from src.services import queries
from src.services.exceptions import InvalidRecurrenceError
from src.services.recurrence import (
    MAX_ITERATIONS,
    as_utc,
    generate_occurrences,
    sunday_index,
)
from src.services.resolver import occurrence_from_event, resolve_occurrences
from src.services.types import UnifiedOccurrence

logger = logging.getLogger(__name__)


def sort_occurrences(occurrences: Iterable[UnifiedOccurrence]) -> list[UnifiedOccurrence]:
    """Sort for display: all-day first, then by start time, then title."""
    return sorted(
        occurrences,
        key=lambda o: (not o.is_all_day, o.start_at, o.title),
    )


class CalendarQueryService:
    """
    Read side of the calendar.

    Holds no global state: the session, calendar timezone and iteration cap
    are supplied by the caller (see src.api.dependencies).
    """

    def __init__(
        self,
        session: Session,
        tz: tzinfo = timezone.utc,
        max_iterations: int = MAX_ITERATIONS,
    ):
        self._session = session
        self._tz = tz
        self._max_iterations = max_iterations

    @property
    def timezone(self) -> tzinfo:
        """Calendar timezone used for recurrence and range boundaries."""
        return self._tz

    def get_events_in_range(
        self,
        group_id: UUID,
        range_start: datetime,
        range_end: datetime,
    ) -> list[UnifiedOccurrence]:
        """
        Get every occurrence of a group's events overlapping a range.

        Args:
            group_id: Family group to query
            range_start: Range start (inclusive; naive values are UTC)
            range_end: Range end (inclusive; naive values are UTC)

        Returns:
            Unordered list of occurrences; use sort_occurrences for display
        """
        range_start = as_utc(range_start)
        range_end = as_utc(range_end)

        regular = queries.get_regular_events_in_range(
            self._session, group_id, range_start, range_end
        )
        masters = queries.get_recurring_masters_in_range(
            self._session, group_id, range_start, range_end
        )
        exceptions = queries.get_exceptions_for_masters(
            self._session, [m.id for m in masters]
        )

        attendee_event_ids = [e.id for e in regular]
        attendee_event_ids += [m.id for m in masters]
        attendee_event_ids += [e.id for e in exceptions if not e.is_deleted]
        attendee_map = queries.get_attendee_map(self._session, attendee_event_ids)

        exceptions_by_master: dict[UUID, list] = {}
        for exception in exceptions:
            exceptions_by_master.setdefault(exception.parent_event_id, []).append(exception)

        occurrences = [occurrence_from_event(e, attendee_map) for e in regular]

        for master in masters:
            try:
                spans = generate_occurrences(
                    master_start=master.start_at,
                    master_end=master.end_at,
                    rule=master.recurrence_rule,
                    interval=master.recurrence_interval,
                    recurrence_end=master.recurrence_end_at,
                    range_start=range_start,
                    range_end=range_end,
                    days_of_week=master.recurrence_days_of_week,
                    tz=self._tz,
                    max_iterations=self._max_iterations,
                )
            except (InvalidRecurrenceError, TypeError, ValueError) as e:
                logger.warning(
                    f"Skipping recurring event {master.id} in group {group_id}: {e}"
                )
                continue

            occurrences.extend(
                resolve_occurrences(
                    master,
                    spans,
                    exceptions_by_master.get(master.id, []),
                    range_start,
                    range_end,
                    attendee_map,
                )
            )

        logger.debug(
            f"Resolved {len(occurrences)} occurrences for group {group_id} "
            f"({len(regular)} regular, {len(masters)} recurring)"
        )
        return occurrences

    # =========================================================================
    # Calendar views
    # =========================================================================

    def _local_midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self._tz).astimezone(timezone.utc)

    def _day_bounds(self, first: date, last: date) -> tuple[datetime, datetime]:
        start = self._local_midnight(first)
        end = self._local_midnight(last + timedelta(days=1)) - timedelta(microseconds=1)
        return start, end

    def day_range(self, day: date) -> tuple[datetime, datetime]:
        """UTC bounds of one calendar day in the calendar timezone."""
        return self._day_bounds(day, day)

    def month_range(self, year: int, month: int) -> tuple[datetime, datetime]:
        """UTC bounds of a calendar month in the calendar timezone."""
        first = date(year, month, 1)
        next_month = date(year + month // 12, month % 12 + 1, 1)
        return self._day_bounds(first, next_month - timedelta(days=1))

    def week_range(self, day: date) -> tuple[datetime, datetime]:
        """UTC bounds of the Sunday-starting week containing `day`."""
        sunday = day - timedelta(days=sunday_index(day))
        return self._day_bounds(sunday, sunday + timedelta(days=6))

    def get_month_events(self, group_id: UUID, year: int, month: int) -> list[UnifiedOccurrence]:
        """Get sorted occurrences for a whole calendar month."""
        start, end = self.month_range(year, month)
        return sort_occurrences(self.get_events_in_range(group_id, start, end))

    def get_week_events(self, group_id: UUID, day: date) -> list[UnifiedOccurrence]:
        """Get sorted occurrences for the Sunday-starting week containing `day`."""
        start, end = self.week_range(day)
        return sort_occurrences(self.get_events_in_range(group_id, start, end))

    def get_events_starting_today(
        self,
        group_id: UUID,
        now: Optional[datetime] = None,
    ) -> list[UnifiedOccurrence]:
        """
        Get occurrences that start between now and the end of today.

        Used by the daily notification job. "Today" is the calendar day of
        `now` in the calendar timezone.

        Args:
            group_id: Family group to query
            now: Current instant (default: current time; naive values are UTC)

        Returns:
            Sorted occurrences starting in [now, end of today]
        """
        now = datetime.now(timezone.utc) if now is None else as_utc(now)

        _, end_of_today = self.day_range(now.astimezone(self._tz).date())

        occurrences = self.get_events_in_range(group_id, now, end_of_today)
        return sort_occurrences(
            o for o in occurrences if now <= o.start_at <= end_of_today
        )
