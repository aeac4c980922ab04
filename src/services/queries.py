"""
Query service for events.

Provides the store predicates the calendar services rely on:
- Time-range filtering of regular (non-recurring) events
- Cheap pre-filtering of recurring masters
- Exception/tombstone lookup by master
- Batched attendee resolution to avoid N+1 queries
"""

from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, and_, or_
from sqlalchemy.orm import Session

from src.models.events import Event, EventAttendee


# =============================================================================
# Event Queries
# =============================================================================


def get_event_by_id(
    session: Session,
    event_id: UUID,
) -> Optional[Event]:
    """
    Get a single event (master, regular or exception) by ID.

    Args:
        session: Database session
        event_id: Event ID

    Returns:
        Event or None
    """
    return session.scalar(select(Event).where(Event.id == event_id))


def get_regular_events_in_range(
    session: Session,
    group_id: UUID,
    start: datetime,
    end: datetime,
) -> Sequence[Event]:
    """
    Get non-recurring, non-exception events overlapping a time range.

    Args:
        session: Database session
        group_id: Family group to query
        start: Range start (inclusive)
        end: Range end (inclusive)

    Returns:
        List of events ordered by start time
    """
    stmt = (
        select(Event)
        .where(
            and_(
                Event.family_group_id == group_id,
                Event.parent_event_id.is_(None),
                or_(
                    Event.recurrence_rule.is_(None),
                    Event.recurrence_rule == "none",
                ),
                # Events that overlap with the range
                Event.start_at <= end,
                Event.end_at >= start,
            )
        )
        .order_by(Event.start_at)
    )

    return session.scalars(stmt).all()


def get_recurring_masters_in_range(
    session: Session,
    group_id: UUID,
    start: datetime,
    end: datetime,
) -> Sequence[Event]:
    """
    Get recurring masters that may produce occurrences in a range.

    This is a pre-filter: masters anchored after the range or whose
    recurrence ended before it are skipped. The generator applies exact bounds.

    Args:
        session: Database session
        group_id: Family group to query
        start: Range start
        end: Range end

    Returns:
        List of master events
    """
    stmt = (
        select(Event)
        .where(
            and_(
                Event.family_group_id == group_id,
                Event.parent_event_id.is_(None),
                Event.recurrence_rule.is_not(None),
                Event.recurrence_rule != "none",
                Event.start_at <= end,
                or_(
                    Event.recurrence_end_at.is_(None),
                    Event.recurrence_end_at >= start,
                ),
            )
        )
        .order_by(Event.start_at)
    )

    return session.scalars(stmt).all()


def get_exceptions_for_masters(
    session: Session,
    master_ids: Iterable[UUID],
) -> Sequence[Event]:
    """
    Get every exception and tombstone row belonging to the given masters.

    Args:
        session: Database session
        master_ids: Master event IDs

    Returns:
        List of exception rows (tombstones included)
    """
    master_ids = list(master_ids)
    if not master_ids:
        return []

    stmt = (
        select(Event)
        .where(Event.parent_event_id.in_(master_ids))
        .order_by(Event.exception_date)
    )

    return session.scalars(stmt).all()


def find_exception(
    session: Session,
    master_id: UUID,
    instance_date: datetime,
) -> Optional[Event]:
    """
    Find the override row for one occurrence of a master.

    Args:
        session: Database session
        master_id: Master event ID
        instance_date: Original start of the occurrence

    Returns:
        Exception or tombstone row, or None
    """
    stmt = select(Event).where(
        and_(
            Event.parent_event_id == master_id,
            Event.exception_date == instance_date,
        )
    )
    return session.scalar(stmt)


# =============================================================================
# Attendee Queries
# =============================================================================


def get_attendee_map(
    session: Session,
    event_ids: Iterable[UUID],
) -> dict[UUID, list[UUID]]:
    """
    Resolve attendees for many events in one query.

    Args:
        session: Database session
        event_ids: Events to resolve

    Returns:
        Mapping of event ID to attendee member IDs (events without
        attendees are absent)
    """
    event_ids = list(event_ids)
    if not event_ids:
        return {}

    stmt = (
        select(EventAttendee.event_id, EventAttendee.family_member_id)
        .where(EventAttendee.event_id.in_(event_ids))
        .order_by(EventAttendee.created_at, EventAttendee.id)
    )

    attendees: dict[UUID, list[UUID]] = defaultdict(list)
    for event_id, member_id in session.execute(stmt):
        attendees[event_id].append(member_id)

    return dict(attendees)


def get_exception_ids(
    session: Session,
    master_id: UUID,
) -> list[UUID]:
    """
    Get IDs of all exception and tombstone rows for a master.

    Args:
        session: Database session
        master_id: Master event ID

    Returns:
        List of exception row IDs
    """
    stmt = select(Event.id).where(Event.parent_event_id == master_id)
    return list(session.scalars(stmt).all())
