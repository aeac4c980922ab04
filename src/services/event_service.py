"""
Event mutation service.

Write side of the calendar:
- create / update / delete events (regular events and recurring masters)
- create_exception: "edit this occurrence only"
- delete_instance: "delete this occurrence only" (tombstones)

Every public method runs in one transaction: it commits on success and
rolls back and re-raises on failure. Concurrent writers get last-writer-wins
semantics; tombstone writes converge on a single row per occurrence.
"""

import logging
from datetime import datetime, timezone, tzinfo
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.events import Event, EventAttendee
from src.services import queries
from src.services.exceptions import (
    EventNotFoundError,
    InvalidEventError,
    InvalidRecurrenceError,
)
from src.services.recurrence import (
    RecurrenceRule,
    normalize_days_of_week,
    parse_rule,
    shift_instance_date,
    validate_recurrence,
)
from src.services.types import (
    UNSET,
    EventInput,
    EventPatch,
    RecurrenceSpec,
    apply_patch,
)

logger = logging.getLogger(__name__)


def normalize_timestamp(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert to aware UTC with whole-second precision.

    Instance dates round-trip through virtual occurrence ids at second
    precision, so stored timestamps carry no sub-second part.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0)


def _check_times(start_at: datetime, end_at: datetime) -> None:
    if start_at is None or end_at is None:
        raise InvalidEventError("Event start and end are required")
    if end_at < start_at:
        raise InvalidEventError(
            f"Event ends ({end_at.isoformat()}) before it starts ({start_at.isoformat()})"
        )


def _check_title(title: Optional[str]) -> None:
    if title is None or not title.strip():
        raise InvalidEventError("Event title cannot be empty")


def _unique_ids(ids: Iterable[UUID]) -> list[UUID]:
    return list(dict.fromkeys(ids))


def _series_shape(event: Event) -> Optional[tuple]:
    """Fields that decide which occurrences a master produces, apart from its start."""
    if not event.is_recurring:
        return None
    return (
        event.recurrence_rule,
        event.recurrence_interval,
        normalize_days_of_week(event.recurrence_days_of_week),
    )


class EventService:
    """Creates, updates and deletes events and their per-occurrence overrides."""

    def __init__(self, session: Session, tz: tzinfo = timezone.utc):
        self._session = session
        self._tz = tz

    # =========================================================================
    # Helpers
    # =========================================================================

    def _commit(self) -> None:
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def _require_event(self, event_id: UUID) -> Event:
        event = queries.get_event_by_id(self._session, event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def _require_master(self, master_id: UUID) -> Event:
        master = self._require_event(master_id)
        if not master.is_recurring:
            raise InvalidRecurrenceError(
                f"Event {master_id} is not a recurring master"
            )
        return master

    def _add_attendees(self, event_id: UUID, member_ids: Iterable[UUID]) -> None:
        for member_id in _unique_ids(member_ids):
            self._session.add(EventAttendee(event_id=event_id, family_member_id=member_id))

    def _delete_attendees(self, event_ids: Iterable[UUID]) -> None:
        event_ids = list(event_ids)
        if not event_ids:
            return
        self._session.execute(
            delete(EventAttendee)
            .where(EventAttendee.event_id.in_(event_ids))
            .execution_options(synchronize_session=False)
        )

    def _delete_overrides(self, override_ids: list[UUID]) -> None:
        if not override_ids:
            return
        self._delete_attendees(override_ids)
        self._session.execute(
            delete(Event)
            .where(Event.id.in_(override_ids))
            .execution_options(synchronize_session=False)
        )

    def _realign_overrides(
        self,
        master: Event,
        old_start: datetime,
        old_shape: Optional[tuple],
    ) -> None:
        """
        Keep override rows keyed to the occurrences they replace.

        A moved start re-keys every exception and tombstone to the matching
        occurrence of the moved series. Tombstones move with their key; edited
        occurrences keep their own start and end. A changed rule, interval or
        weekday set (or ending the recurrence) produces different occurrences,
        so the overrides are dropped.
        """
        overrides = queries.get_exceptions_for_masters(self._session, [master.id])
        if not overrides:
            return

        if _series_shape(master) != old_shape:
            self._delete_overrides([o.id for o in overrides])
            logger.info(
                f"Dropped {len(overrides)} overrides of event {master.id} "
                f"after its recurrence changed"
            )
            return

        if master.start_at == old_start:
            return

        new_keys = {
            o.id: shift_instance_date(
                o.exception_date,
                old_start,
                master.start_at,
                master.recurrence_rule,
                master.recurrence_days_of_week,
                self._tz,
            )
            for o in overrides
        }

        # Clear keys first so shifted rows never collide on the unique key
        for override in overrides:
            override.exception_date = None
        self._session.flush()

        for override in overrides:
            override.exception_date = new_keys[override.id]
            if override.is_deleted:
                override.start_at = override.end_at = override.exception_date
        self._session.flush()

        logger.info(
            f"Re-keyed {len(overrides)} overrides of event {master.id} "
            f"by {master.start_at - old_start}"
        )

    # =========================================================================
    # Events and masters
    # =========================================================================

    def create_event(
        self,
        group_id: UUID,
        created_by: UUID,
        fields: EventInput,
        recurrence: Optional[RecurrenceSpec] = None,
    ) -> UUID:
        """
        Create a regular event or recurring master.

        When no attendees are given, the creator becomes the sole attendee.

        Args:
            group_id: Owning family group
            created_by: Member creating the event
            fields: Event fields
            recurrence: Recurrence definition (default: not recurring)

        Returns:
            ID of the new event

        Raises:
            InvalidEventError: If the event ends before it starts
            InvalidRecurrenceError: If the recurrence definition is invalid
        """
        recurrence = recurrence or RecurrenceSpec()
        _check_title(fields.title)
        start_at = normalize_timestamp(fields.start_at)
        end_at = normalize_timestamp(fields.end_at)
        _check_times(start_at, end_at)

        rule = validate_recurrence(
            recurrence.rule,
            recurrence.interval,
            recurrence.days_of_week,
            recurrence.end_at,
            start_at,
        )
        recurring = rule is not RecurrenceRule.NONE

        event = Event(
            family_group_id=group_id,
            created_by=created_by,
            title=fields.title,
            description=fields.description,
            location=fields.location,
            start_at=start_at,
            end_at=end_at,
            is_all_day=fields.is_all_day,
            source=fields.source,
            recurrence_rule=rule.value if recurring else None,
            recurrence_interval=recurrence.interval if recurring else 1,
            recurrence_end_at=normalize_timestamp(recurrence.end_at) if recurring else None,
            recurrence_days_of_week=(
                normalize_days_of_week(recurrence.days_of_week) if recurring else None
            ),
        )

        try:
            self._session.add(event)
            self._session.flush()
            self._add_attendees(event.id, fields.attendee_ids or [created_by])
            self._session.flush()
        except Exception:
            self._session.rollback()
            raise
        self._commit()

        logger.info(
            f"Created event {event.id} in group {group_id} "
            f"(rule={event.recurrence_rule or 'none'})"
        )
        return event.id

    def update_event(self, event_id: UUID, patch: EventPatch) -> None:
        """
        Apply a partial update to an event.

        Only supplied patch fields are written. A supplied attendee list
        replaces the whole attendee set (delete then re-insert) in the same
        transaction as the field update.

        Raises:
            EventNotFoundError: If the event does not exist
            InvalidEventError: If the result ends before it starts
            InvalidRecurrenceError: If the resulting recurrence is invalid or
                recurrence fields are set on an exception row
        """
        event = self._require_event(event_id)
        if patch.title is not UNSET:
            _check_title(patch.title)

        start_at = event.start_at
        end_at = event.end_at
        if patch.start_at is not UNSET:
            patch.start_at = start_at = normalize_timestamp(patch.start_at)
        if patch.end_at is not UNSET:
            patch.end_at = end_at = normalize_timestamp(patch.end_at)
        _check_times(start_at, end_at)

        if patch.touches_recurrence:
            if event.is_exception:
                raise InvalidRecurrenceError(
                    "Recurrence cannot be set on a single-occurrence exception"
                )
            self._validate_patched_recurrence(event, patch, start_at)

        was_recurring = event.is_recurring
        old_start = event.start_at
        old_shape = _series_shape(event)

        try:
            apply_patch(event, patch)
            if not event.is_recurring:
                event.recurrence_interval = 1
                event.recurrence_end_at = None
                event.recurrence_days_of_week = None

            if was_recurring:
                self._realign_overrides(event, old_start, old_shape)

            if patch.attendee_ids is not UNSET:
                self._delete_attendees([event.id])
                self._add_attendees(event.id, patch.attendee_ids or [])

            self._session.flush()
        except Exception:
            self._session.rollback()
            raise
        self._commit()

        logger.info(f"Updated event {event_id}: {sorted(patch.supplied())}")

    def _validate_patched_recurrence(
        self,
        event: Event,
        patch: EventPatch,
        start_at: datetime,
    ) -> None:
        def pick(name: str):
            value = getattr(patch, name)
            return getattr(event, name) if value is UNSET else value

        rule = parse_rule(pick("recurrence_rule"))
        if patch.recurrence_rule is not UNSET:
            patch.recurrence_rule = rule
        days = pick("recurrence_days_of_week")
        if rule is not RecurrenceRule.WEEKLY and patch.recurrence_days_of_week is UNSET:
            # Switching away from weekly drops the old weekday set
            days = None
            patch.recurrence_days_of_week = None

        if patch.recurrence_end_at is not UNSET:
            patch.recurrence_end_at = normalize_timestamp(patch.recurrence_end_at)
        if days is not None:
            patch.recurrence_days_of_week = normalize_days_of_week(days)

        validate_recurrence(
            rule,
            pick("recurrence_interval"),
            days,
            pick("recurrence_end_at"),
            start_at,
        )

    def delete_event(self, event_id: UUID) -> None:
        """
        Delete an event.

        For a recurring master, all exception and tombstone rows (and their
        attendees) are deleted first, then the master's attendees, then the
        master row. For an exception row only that row is deleted, which
        restores the virtual occurrence it was overriding.

        Raises:
            EventNotFoundError: If the event does not exist
        """
        event = self._require_event(event_id)

        try:
            exception_ids = queries.get_exception_ids(self._session, event.id)
            self._delete_overrides(exception_ids)

            self._delete_attendees([event.id])
            self._session.execute(
                delete(Event)
                .where(Event.id == event.id)
                .execution_options(synchronize_session=False)
            )
            self._session.flush()
        except Exception:
            self._session.rollback()
            raise
        self._commit()
        self._session.expire_all()

        logger.info(
            f"Deleted event {event_id} with {len(exception_ids)} exception rows"
        )

    # =========================================================================
    # Single occurrences
    # =========================================================================

    def create_exception(
        self,
        master_id: UUID,
        instance_date: datetime,
        patch: Optional[EventPatch] = None,
    ) -> UUID:
        """
        Override one occurrence of a recurring master.

        Omitted fields inherit from the master; start/end default to the
        instance date plus the master's duration, attendees to the master's.
        If the occurrence already has an override row (edit or tombstone),
        that row is updated in place.

        Args:
            master_id: Recurring master
            instance_date: Original start of the occurrence
            patch: Fields that differ from the master

        Returns:
            ID of the exception row

        Raises:
            EventNotFoundError: If the master does not exist
            InvalidRecurrenceError: If the target is not a recurring master,
                or the patch carries recurrence fields
            InvalidEventError: If the exception ends before it starts
        """
        patch = patch or EventPatch()
        master = self._require_master(master_id)
        instance_date = normalize_timestamp(instance_date)

        if patch.touches_recurrence:
            raise InvalidRecurrenceError("Exceptions cannot carry recurrence fields")
        if patch.title is not UNSET:
            _check_title(patch.title)

        def pick(name: str, default):
            value = getattr(patch, name)
            return default if value is UNSET else value

        start_at = normalize_timestamp(pick("start_at", None) or instance_date)
        end_at = normalize_timestamp(pick("end_at", None) or start_at + master.duration)
        _check_times(start_at, end_at)

        if patch.attendee_ids is UNSET:
            attendee_ids = queries.get_attendee_map(self._session, [master.id]).get(master.id, [])
        else:
            attendee_ids = patch.attendee_ids or []

        try:
            exception = queries.find_exception(self._session, master.id, instance_date)
            if exception is None:
                exception = Event(
                    family_group_id=master.family_group_id,
                    created_by=master.created_by,
                    parent_event_id=master.id,
                    exception_date=instance_date,
                    source=master.source,
                )
                self._session.add(exception)
            else:
                self._delete_attendees([exception.id])

            exception.title = pick("title", master.title)
            exception.description = pick("description", master.description)
            exception.location = pick("location", master.location)
            exception.is_all_day = pick("is_all_day", master.is_all_day)
            exception.start_at = start_at
            exception.end_at = end_at
            exception.is_deleted = False
            self._session.flush()

            self._add_attendees(exception.id, attendee_ids)
            self._session.flush()
        except Exception:
            self._session.rollback()
            raise
        self._commit()

        logger.info(
            f"Created exception {exception.id} for event {master_id} "
            f"at {instance_date.isoformat()}"
        )
        return exception.id

    def delete_instance(self, master_id: UUID, instance_date: datetime) -> None:
        """
        Delete one occurrence of a recurring master.

        An existing override row is turned into a tombstone in place;
        otherwise a new tombstone (empty content, start = end = instance
        date) is inserted. Calling this twice is a no-op the second time.

        Raises:
            EventNotFoundError: If the master does not exist
            InvalidRecurrenceError: If the target is not a recurring master
        """
        self._require_master(master_id)
        instance_date = normalize_timestamp(instance_date)

        try:
            self._write_tombstone(master_id, instance_date)
            self._session.commit()
        except IntegrityError:
            # A concurrent writer inserted the tombstone first; flag it instead
            self._session.rollback()
            logger.info(
                f"Tombstone for event {master_id} at {instance_date.isoformat()} "
                f"already written concurrently; retrying as update"
            )
            self._require_master(master_id)
            try:
                self._write_tombstone(master_id, instance_date)
            except Exception:
                self._session.rollback()
                raise
            self._commit()
        except Exception:
            self._session.rollback()
            raise

    def _write_tombstone(self, master_id: UUID, instance_date: datetime) -> None:
        existing = queries.find_exception(self._session, master_id, instance_date)

        if existing is not None:
            if existing.is_deleted:
                logger.debug(
                    f"Occurrence of {master_id} at {instance_date.isoformat()} already deleted"
                )
                return
            self._delete_attendees([existing.id])
            existing.is_deleted = True
            self._session.flush()
            logger.info(f"Converted exception {existing.id} into a tombstone")
            return

        master = self._require_master(master_id)
        tombstone = Event(
            family_group_id=master.family_group_id,
            created_by=master.created_by,
            title="",
            start_at=instance_date,
            end_at=instance_date,
            parent_event_id=master_id,
            exception_date=instance_date,
            is_deleted=True,
        )
        self._session.add(tombstone)
        self._session.flush()
        logger.info(
            f"Created tombstone {tombstone.id} for event {master_id} "
            f"at {instance_date.isoformat()}"
        )
