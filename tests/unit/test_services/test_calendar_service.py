"""
Unit tests for the calendar query service.

Covers the unified range query, per-master failure isolation, the calendar
view helpers and display sorting.
"""

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.orm import Session

from src.models.events import Event, EventAttendee
from src.models.family import FamilyGroup, FamilyMember
from src.services.calendar_service import CalendarQueryService, sort_occurrences
from src.services.event_service import EventService
from src.services.recurrence import parse_virtual_id
from src.services.types import EventPatch, UnifiedOccurrence


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


JANUARY = (utc(2026, 1, 1), utc(2026, 1, 31, 23, 59, 59))


@pytest.fixture
def service(db_session: Session) -> CalendarQueryService:
    return CalendarQueryService(db_session)


def add_exception(session: Session, master: Event, instance: datetime, **fields) -> Event:
    values = dict(
        family_group_id=master.family_group_id,
        created_by=master.created_by,
        title=master.title,
        start_at=instance,
        end_at=instance + master.duration,
        parent_event_id=master.id,
        exception_date=instance,
    )
    values.update(fields)
    exception = Event(**values)
    session.add(exception)
    session.commit()
    return exception


class TestGetEventsInRange:
    """Test get_events_in_range."""

    def test_expands_master(
        self, service: CalendarQueryService, sample_group: FamilyGroup, daily_master: Event
    ):
        occurrences = service.get_events_in_range(sample_group.id, *JANUARY)

        assert len(occurrences) == 10
        assert all(o.is_virtual for o in occurrences)
        assert all(o.master_event_id == daily_master.id for o in occurrences)

    def test_edited_occurrence_replaces_virtual(
        self,
        db_session: Session,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        daily_master: Event,
    ):
        """Editing day 3 yields nine virtual occurrences plus the concrete edit."""
        exception = add_exception(db_session, daily_master, utc(2026, 1, 3, 9), title="X")

        occurrences = service.get_events_in_range(sample_group.id, *JANUARY)

        assert len(occurrences) == 10
        virtual = [o for o in occurrences if o.is_virtual]
        concrete = [o for o in occurrences if not o.is_virtual]
        assert len(virtual) == 9
        assert utc(2026, 1, 3, 9) not in [o.start_at for o in virtual]
        assert len(concrete) == 1
        assert concrete[0].id == str(exception.id)
        assert concrete[0].title == "X"
        assert concrete[0].start_at == utc(2026, 1, 3, 9)

    def test_moved_edit_shadows_unbounded_series(
        self,
        db_session: Session,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        sample_member: FamilyMember,
    ):
        """An open-ended series still hides the occurrence a moved edit replaces."""
        master = Event(
            family_group_id=sample_group.id,
            created_by=sample_member.id,
            title="Forever",
            start_at=utc(2026, 1, 1, 9),
            end_at=utc(2026, 1, 1, 10),
            recurrence_rule="daily",
        )
        db_session.add(master)
        db_session.commit()
        EventService(db_session).create_exception(
            master.id,
            utc(2026, 1, 3, 9),
            EventPatch(title="X", start_at=utc(2026, 1, 3, 11), end_at=utc(2026, 1, 3, 12)),
        )

        occurrences = service.get_events_in_range(
            sample_group.id, utc(2026, 1, 1), utc(2026, 1, 10, 23, 59)
        )

        assert len(occurrences) == 10
        virtual = [o for o in occurrences if o.is_virtual]
        concrete = [o for o in occurrences if not o.is_virtual]
        assert len(virtual) == 9
        assert utc(2026, 1, 3, 9) not in [o.start_at for o in virtual]
        assert [(o.title, o.start_at) for o in concrete] == [("X", utc(2026, 1, 3, 11))]

    def test_tombstone_hides_occurrence(
        self,
        db_session: Session,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        daily_master: Event,
    ):
        instance = utc(2026, 1, 4, 9)
        add_exception(db_session, daily_master, instance, title="", end_at=instance, is_deleted=True)

        occurrences = service.get_events_in_range(sample_group.id, *JANUARY)

        assert len(occurrences) == 9
        assert instance not in [o.start_at for o in occurrences]

    def test_regular_and_recurring_combined(
        self,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        sample_event: Event,
        daily_master: Event,
    ):
        occurrences = service.get_events_in_range(
            sample_group.id, utc(2026, 1, 1), utc(2026, 2, 28)
        )

        assert len(occurrences) == 11
        regular = [o for o in occurrences if o.master_event_id is None]
        assert [o.id for o in regular] == [str(sample_event.id)]

    def test_attendees_resolved(
        self,
        db_session: Session,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        daily_master: Event,
        multiple_family_members: list[FamilyMember],
    ):
        papa, mama, hana = multiple_family_members
        exception = add_exception(db_session, daily_master, utc(2026, 1, 3, 9), title="X")
        db_session.add(EventAttendee(event_id=exception.id, family_member_id=hana.id))
        db_session.commit()

        occurrences = service.get_events_in_range(sample_group.id, *JANUARY)

        by_id = {o.id: o for o in occurrences}
        assert by_id[str(exception.id)].attendee_ids == [hana.id]
        assert all(o.attendee_ids == [papa.id] for o in occurrences if o.is_virtual)

    def test_invalid_master_skipped(
        self,
        db_session: Session,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        sample_member: FamilyMember,
        daily_master: Event,
        caplog,
    ):
        """A corrupted recurrence row is logged and skipped; the rest still resolves."""
        broken = Event(
            family_group_id=sample_group.id,
            created_by=sample_member.id,
            title="Broken",
            start_at=utc(2026, 1, 1, 12),
            end_at=utc(2026, 1, 1, 13),
            recurrence_rule="fortnightly",
        )
        db_session.add(broken)
        db_session.commit()

        with caplog.at_level(logging.WARNING, logger="src.services.calendar_service"):
            occurrences = service.get_events_in_range(sample_group.id, *JANUARY)

        assert len(occurrences) == 10
        assert all(o.master_event_id == daily_master.id for o in occurrences)
        assert str(broken.id) in caplog.text

    def test_iteration_cap_from_constructor(
        self,
        db_session: Session,
        sample_group: FamilyGroup,
        sample_member: FamilyMember,
    ):
        db_session.add(
            Event(
                family_group_id=sample_group.id,
                created_by=sample_member.id,
                title="Forever",
                start_at=utc(2026, 1, 1, 7),
                end_at=utc(2026, 1, 1, 8),
                recurrence_rule="daily",
            )
        )
        db_session.commit()

        capped = CalendarQueryService(db_session, max_iterations=3)

        assert len(capped.get_events_in_range(sample_group.id, *JANUARY)) == 3

    def test_empty_group(self, service: CalendarQueryService):
        assert service.get_events_in_range(uuid.uuid4(), *JANUARY) == []

    def test_naive_range_is_utc(
        self,
        db_session: Session,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        daily_master: Event,
    ):
        add_exception(db_session, daily_master, utc(2026, 1, 3, 9), title="X")

        occurrences = service.get_events_in_range(
            sample_group.id, datetime(2026, 1, 1), datetime(2026, 1, 10, 23, 59)
        )

        assert len(occurrences) == 10
        assert [o.title for o in occurrences].count("X") == 1


class TestRoundTrip:
    """Virtual ids from a query feed straight back into mutations."""

    def test_delete_by_virtual_id(
        self,
        db_session: Session,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        daily_master: Event,
    ):
        occurrences = service.get_events_in_range(sample_group.id, *JANUARY)
        target = occurrences[4]

        master_id, instance_date = parse_virtual_id(target.id)
        assert master_id == daily_master.id
        assert instance_date == target.instance_date

        EventService(db_session).delete_instance(master_id, instance_date)

        after = service.get_events_in_range(sample_group.id, *JANUARY)
        assert len(after) == 9
        assert target.id not in [o.id for o in after]

    def test_master_delete_cascades(
        self,
        db_session: Session,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        daily_master: Event,
    ):
        add_exception(db_session, daily_master, utc(2026, 1, 3, 9), title="X")
        instance = utc(2026, 1, 4, 9)
        add_exception(db_session, daily_master, instance, title="", end_at=instance, is_deleted=True)

        EventService(db_session).delete_event(daily_master.id)

        assert service.get_events_in_range(sample_group.id, *JANUARY) == []
        assert db_session.query(Event).count() == 0


class TestCalendarViews:
    """Test month/week/today helpers."""

    def test_month_range_utc(self, service: CalendarQueryService):
        start, end = service.month_range(2026, 2)

        assert start == utc(2026, 2, 1)
        assert end == utc(2026, 2, 28, 23, 59, 59, 999999)

    def test_month_range_december(self, service: CalendarQueryService):
        start, end = service.month_range(2026, 12)

        assert start == utc(2026, 12, 1)
        assert end == utc(2026, 12, 31, 23, 59, 59, 999999)

    def test_month_range_calendar_timezone(self, db_session: Session):
        tokyo_service = CalendarQueryService(db_session, tz=ZoneInfo("Asia/Tokyo"))

        start, end = tokyo_service.month_range(2026, 1)

        assert start == utc(2025, 12, 31, 15)
        assert end == utc(2026, 1, 31, 14, 59, 59, 999999)

    def test_week_range_starts_sunday(self, service: CalendarQueryService):
        start, end = service.week_range(date(2026, 1, 7))  # Wednesday

        assert start == utc(2026, 1, 4)
        assert end == utc(2026, 1, 10, 23, 59, 59, 999999)

    def test_week_range_on_sunday(self, service: CalendarQueryService):
        start, _ = service.week_range(date(2026, 1, 4))
        assert start == utc(2026, 1, 4)

    def test_get_month_events_sorted(
        self, service: CalendarQueryService, sample_group: FamilyGroup, daily_master: Event
    ):
        occurrences = service.get_month_events(sample_group.id, 2026, 1)

        assert len(occurrences) == 10
        assert [o.start_at for o in occurrences] == sorted(o.start_at for o in occurrences)

    def test_get_week_events(
        self, service: CalendarQueryService, sample_group: FamilyGroup, daily_master: Event
    ):
        occurrences = service.get_week_events(sample_group.id, date(2026, 1, 7))

        # Week of Sun 4th .. Sat 10th
        assert [o.start_at.day for o in occurrences] == [4, 5, 6, 7, 8, 9, 10]

    def test_get_events_starting_today(
        self,
        db_session: Session,
        service: CalendarQueryService,
        sample_group: FamilyGroup,
        sample_member: FamilyMember,
        daily_master: Event,
    ):
        """Only occurrences starting between now and midnight are returned."""
        db_session.add(
            Event(
                family_group_id=sample_group.id,
                created_by=sample_member.id,
                title="Early run",
                start_at=utc(2026, 1, 5, 6),
                end_at=utc(2026, 1, 5, 10),
            )
        )
        db_session.commit()

        occurrences = service.get_events_starting_today(sample_group.id, now=utc(2026, 1, 5, 8))

        assert [o.start_at for o in occurrences] == [utc(2026, 1, 5, 9)]

    def test_get_events_starting_today_naive_now(
        self, service: CalendarQueryService, sample_group: FamilyGroup, daily_master: Event
    ):
        """A naive `now` is read as UTC, not as the host's local time."""
        occurrences = service.get_events_starting_today(sample_group.id, now=datetime(2026, 1, 5, 8))

        assert [o.start_at for o in occurrences] == [utc(2026, 1, 5, 9)]

    def test_day_range(self, service: CalendarQueryService):
        start, end = service.day_range(date(2026, 1, 5))

        assert start == utc(2026, 1, 5)
        assert end - start == timedelta(days=1) - timedelta(microseconds=1)


class TestSortOccurrences:
    """Test sort_occurrences."""

    def make(self, title: str, start: datetime, all_day: bool = False) -> UnifiedOccurrence:
        return UnifiedOccurrence(
            id=title,
            group_id=uuid.uuid4(),
            title=title,
            start_at=start,
            end_at=start + timedelta(hours=1),
            is_all_day=all_day,
        )

    def test_all_day_first_then_start_then_title(self):
        late = self.make("Late", utc(2026, 1, 5, 18))
        early_b = self.make("B", utc(2026, 1, 5, 8))
        early_a = self.make("A", utc(2026, 1, 5, 8))
        holiday = self.make("Holiday", utc(2026, 1, 5, 0), all_day=True)

        ordered = sort_occurrences([late, early_b, holiday, early_a])

        assert [o.title for o in ordered] == ["Holiday", "A", "B", "Late"]
