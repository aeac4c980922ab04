"""
Unit tests for the query service.

Tests the store predicates against an in-memory SQLite database.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from src.models.events import Event, EventAttendee
from src.models.family import FamilyGroup, FamilyMember
from src.services.queries import (
    find_exception,
    get_attendee_map,
    get_event_by_id,
    get_exception_ids,
    get_exceptions_for_masters,
    get_recurring_masters_in_range,
    get_regular_events_in_range,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def add_event(session: Session, group: FamilyGroup, member: FamilyMember, **fields) -> Event:
    event = Event(family_group_id=group.id, created_by=member.id, **fields)
    session.add(event)
    session.commit()
    return event


class TestGetEventById:
    """Test get_event_by_id."""

    def test_found(self, db_session: Session, sample_event: Event):
        assert get_event_by_id(db_session, sample_event.id).id == sample_event.id

    def test_missing(self, db_session: Session):
        assert get_event_by_id(db_session, uuid.uuid4()) is None


class TestRegularEventsInRange:
    """Test get_regular_events_in_range."""

    def test_overlapping_event_returned(
        self, db_session: Session, sample_group: FamilyGroup, sample_event: Event
    ):
        events = get_regular_events_in_range(
            db_session, sample_group.id, utc(2026, 2, 15), utc(2026, 2, 15, 23, 59)
        )
        assert [e.id for e in events] == [sample_event.id]

    def test_boundaries_inclusive(
        self, db_session: Session, sample_group: FamilyGroup, sample_event: Event
    ):
        """An event touching the range at either end overlaps it."""
        ends_at_start = get_regular_events_in_range(
            db_session, sample_group.id, utc(2026, 2, 15, 11), utc(2026, 2, 15, 12)
        )
        starts_at_end = get_regular_events_in_range(
            db_session, sample_group.id, utc(2026, 2, 15, 9), utc(2026, 2, 15, 10)
        )

        assert len(ends_at_start) == 1
        assert len(starts_at_end) == 1

    def test_non_overlapping_excluded(
        self, db_session: Session, sample_group: FamilyGroup, sample_event: Event
    ):
        events = get_regular_events_in_range(
            db_session, sample_group.id, utc(2026, 2, 16), utc(2026, 2, 28)
        )
        assert events == []

    def test_other_group_excluded(self, db_session: Session, sample_event: Event):
        other = FamilyGroup(name="Neighbours", invite_code="NEXT0001")
        db_session.add(other)
        db_session.commit()

        events = get_regular_events_in_range(
            db_session, other.id, utc(2026, 2, 1), utc(2026, 2, 28)
        )
        assert events == []

    def test_masters_and_exceptions_excluded(
        self,
        db_session: Session,
        sample_group: FamilyGroup,
        sample_member: FamilyMember,
        daily_master: Event,
    ):
        add_event(
            db_session, sample_group, sample_member,
            title="Edited", start_at=utc(2026, 1, 3, 9), end_at=utc(2026, 1, 3, 10),
            parent_event_id=daily_master.id, exception_date=utc(2026, 1, 3, 9),
        )

        events = get_regular_events_in_range(
            db_session, sample_group.id, utc(2026, 1, 1), utc(2026, 1, 31)
        )
        assert events == []

    def test_literal_none_rule_is_regular(
        self, db_session: Session, sample_group: FamilyGroup, sample_member: FamilyMember
    ):
        event = add_event(
            db_session, sample_group, sample_member,
            title="Legacy", start_at=utc(2026, 1, 5, 9), end_at=utc(2026, 1, 5, 10),
            recurrence_rule="none",
        )

        events = get_regular_events_in_range(
            db_session, sample_group.id, utc(2026, 1, 1), utc(2026, 1, 31)
        )
        assert [e.id for e in events] == [event.id]


class TestRecurringMastersInRange:
    """Test get_recurring_masters_in_range."""

    def test_master_returned(
        self, db_session: Session, sample_group: FamilyGroup, daily_master: Event
    ):
        masters = get_recurring_masters_in_range(
            db_session, sample_group.id, utc(2026, 1, 5), utc(2026, 1, 6)
        )
        assert [m.id for m in masters] == [daily_master.id]

    def test_master_anchored_after_range_excluded(
        self, db_session: Session, sample_group: FamilyGroup, daily_master: Event
    ):
        masters = get_recurring_masters_in_range(
            db_session, sample_group.id, utc(2025, 12, 1), utc(2025, 12, 31)
        )
        assert masters == []

    def test_master_ended_before_range_excluded(
        self, db_session: Session, sample_group: FamilyGroup, daily_master: Event
    ):
        masters = get_recurring_masters_in_range(
            db_session, sample_group.id, utc(2026, 2, 1), utc(2026, 2, 28)
        )
        assert masters == []

    def test_unbounded_master_included(
        self, db_session: Session, sample_group: FamilyGroup, sample_member: FamilyMember
    ):
        master = add_event(
            db_session, sample_group, sample_member,
            title="Forever", start_at=utc(2020, 1, 1, 9), end_at=utc(2020, 1, 1, 10),
            recurrence_rule="weekly",
        )

        masters = get_recurring_masters_in_range(
            db_session, sample_group.id, utc(2030, 1, 1), utc(2030, 1, 31)
        )
        assert [m.id for m in masters] == [master.id]

    def test_regular_events_excluded(
        self, db_session: Session, sample_group: FamilyGroup, sample_event: Event
    ):
        masters = get_recurring_masters_in_range(
            db_session, sample_group.id, utc(2026, 2, 1), utc(2026, 2, 28)
        )
        assert masters == []


class TestExceptionQueries:
    """Test exception lookups."""

    def test_exceptions_for_masters(
        self,
        db_session: Session,
        sample_group: FamilyGroup,
        sample_member: FamilyMember,
        daily_master: Event,
    ):
        tombstone = add_event(
            db_session, sample_group, sample_member,
            title="", start_at=utc(2026, 1, 4, 9), end_at=utc(2026, 1, 4, 9),
            parent_event_id=daily_master.id, exception_date=utc(2026, 1, 4, 9),
            is_deleted=True,
        )
        edited = add_event(
            db_session, sample_group, sample_member,
            title="Edited", start_at=utc(2026, 1, 3, 11), end_at=utc(2026, 1, 3, 12),
            parent_event_id=daily_master.id, exception_date=utc(2026, 1, 3, 9),
        )

        rows = get_exceptions_for_masters(db_session, [daily_master.id])

        # Ordered by exception_date, tombstones included
        assert [r.id for r in rows] == [edited.id, tombstone.id]
        assert set(get_exception_ids(db_session, daily_master.id)) == {edited.id, tombstone.id}

    def test_exceptions_for_no_masters(self, db_session: Session):
        assert get_exceptions_for_masters(db_session, []) == []

    def test_find_exception(
        self,
        db_session: Session,
        sample_group: FamilyGroup,
        sample_member: FamilyMember,
        daily_master: Event,
    ):
        edited = add_event(
            db_session, sample_group, sample_member,
            title="Edited", start_at=utc(2026, 1, 3, 11), end_at=utc(2026, 1, 3, 12),
            parent_event_id=daily_master.id, exception_date=utc(2026, 1, 3, 9),
        )

        assert find_exception(db_session, daily_master.id, utc(2026, 1, 3, 9)).id == edited.id
        assert find_exception(db_session, daily_master.id, utc(2026, 1, 4, 9)) is None


class TestAttendeeMap:
    """Test get_attendee_map."""

    def test_batched_lookup(
        self,
        db_session: Session,
        sample_event: Event,
        daily_master: Event,
        multiple_family_members: list[FamilyMember],
    ):
        papa, mama, hana = multiple_family_members
        db_session.add_all([
            EventAttendee(event_id=daily_master.id, family_member_id=mama.id),
            EventAttendee(event_id=daily_master.id, family_member_id=hana.id),
        ])
        db_session.commit()

        attendees = get_attendee_map(db_session, [sample_event.id, daily_master.id])

        assert attendees[sample_event.id] == [papa.id]
        assert set(attendees[daily_master.id]) == {papa.id, mama.id, hana.id}

    def test_events_without_attendees_absent(self, db_session: Session):
        assert get_attendee_map(db_session, [uuid.uuid4()]) == {}

    def test_empty_input(self, db_session: Session):
        assert get_attendee_map(db_session, []) == {}
