"""
Exception resolution for recurring events.

Merges one master's generated occurrences with its exception and tombstone
rows:
- any override row (edit or tombstone) shadows the virtual occurrence whose
  start equals its exception_date
- non-deleted exceptions overlapping the query range are emitted as concrete
  occurrences carrying their own fields
"""

from datetime import datetime, timezone
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from src.models.events import Event
from src.services.recurrence import OccurrenceSpan, format_virtual_id
from src.services.types import UnifiedOccurrence


def _utc_key(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def build_exception_lookup(exceptions: Iterable[Event]) -> dict[datetime, Event]:
    """Index override rows by the original occurrence start they replace."""
    return {
        _utc_key(exception.exception_date): exception
        for exception in exceptions
        if exception.exception_date is not None
    }


def occurrence_from_event(
    event: Event,
    attendee_map: Mapping[UUID, list[UUID]],
) -> UnifiedOccurrence:
    """Build the occurrence for a regular (non-recurring) event."""
    return UnifiedOccurrence(
        id=str(event.id),
        group_id=event.family_group_id,
        title=event.title,
        description=event.description,
        location=event.location,
        start_at=event.start_at,
        end_at=event.end_at,
        is_all_day=event.is_all_day,
        attendee_ids=list(attendee_map.get(event.id, [])),
        is_virtual=False,
    )


def resolve_occurrences(
    master: Event,
    spans: Sequence[OccurrenceSpan],
    exceptions: Iterable[Event],
    range_start: datetime,
    range_end: datetime,
    attendee_map: Mapping[UUID, list[UUID]],
) -> list[UnifiedOccurrence]:
    """
    Produce the final occurrence list for one master.

    Args:
        master: Recurring master event
        spans: Generated occurrences for the query range
        exceptions: Override rows whose parent is this master
        range_start: Query range start
        range_end: Query range end (inclusive)
        attendee_map: Event ID -> attendee member IDs

    Returns:
        Virtual occurrences not shadowed by an override, followed by the
        master's non-deleted exceptions that overlap the range
    """
    exceptions = [e for e in exceptions if e.parent_event_id == master.id]
    lookup = build_exception_lookup(exceptions)
    master_attendees = attendee_map.get(master.id, [])

    resolved = []
    for span in spans:
        if _utc_key(span.start_at) in lookup:
            continue

        resolved.append(
            UnifiedOccurrence(
                id=format_virtual_id(master.id, span.start_at),
                group_id=master.family_group_id,
                title=master.title,
                description=master.description,
                location=master.location,
                start_at=span.start_at,
                end_at=span.end_at,
                is_all_day=master.is_all_day,
                attendee_ids=list(master_attendees),
                recurrence_rule=master.recurrence_rule,
                master_event_id=master.id,
                master_start_at=master.start_at,
                master_end_at=master.end_at,
                instance_date=span.start_at,
                is_virtual=True,
            )
        )

    for exception in exceptions:
        if exception.is_deleted:
            continue
        if exception.start_at > range_end or exception.end_at < range_start:
            continue

        resolved.append(
            UnifiedOccurrence(
                id=str(exception.id),
                group_id=exception.family_group_id,
                title=exception.title,
                description=exception.description,
                location=exception.location,
                start_at=exception.start_at,
                end_at=exception.end_at,
                is_all_day=exception.is_all_day,
                attendee_ids=list(attendee_map.get(exception.id, [])),
                recurrence_rule=master.recurrence_rule,
                master_event_id=master.id,
                master_start_at=master.start_at,
                master_end_at=master.end_at,
                is_virtual=False,
            )
        )

    return resolved
