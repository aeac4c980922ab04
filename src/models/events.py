"""
Event and EventAttendee models.

Entities:
- Event: A calendar entry. One row type plays three roles:
    * regular event    - no recurrence rule, no parent
    * recurring master - recurrence rule set, no parent
    * exception        - parent_event_id set; overrides (or, with
                         is_deleted, suppresses) one occurrence of its master
- EventAttendee: Many-to-many association between Events and FamilyMembers
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Boolean, Integer, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import BaseModel, UTCDateTime, get_json_type

# Avoid circular imports for type hints
if TYPE_CHECKING:
    from src.models.family import FamilyGroup, FamilyMember


class Event(BaseModel):
    """
    Represents a calendar event, recurring master, or occurrence override.

    Key features:
    - Group-scoped (family_group_id is the tenant boundary)
    - Simple recurrence model: daily / weekly (+ weekdays) / monthly / yearly
      with a positive interval and optional inclusive end bound
    - Per-occurrence exceptions keyed by the original occurrence start
      (exception_date), with tombstones (is_deleted) for single deletions
    """

    __tablename__ = "events"

    # Ownership
    family_group_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("family_groups.id"),
        nullable=False,
        doc="Family group this event belongs to"
    )

    created_by: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("family_members.id"),
        nullable=False,
        doc="Family member who created this event"
    )

    # Basic event information
    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        doc="Event title (empty for tombstones)"
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Detailed event description"
    )

    location: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        doc="Event location"
    )

    # Timing
    start_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="Event start (UTC)"
    )

    end_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="Event end (UTC); equal to start_at for tombstones"
    )

    is_all_day: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        doc="Whether this is an all-day event (display only)"
    )

    source: Mapped[str] = mapped_column(
        String(50),
        default="manual",
        nullable=False,
        doc="How the event was created: 'manual', 'ai_scan'"
    )

    # Recurrence fields (masters only)
    recurrence_rule: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        doc="Recurrence rule: 'daily', 'weekly', 'monthly', 'yearly' (NULL = none)"
    )

    recurrence_interval: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
        doc="Step between occurrences in units of the rule"
    )

    recurrence_end_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="Inclusive upper bound for occurrence starts (NULL = unbounded)"
    )

    recurrence_days_of_week: Mapped[Optional[list]] = mapped_column(
        get_json_type(),
        nullable=True,
        doc="Weekly only: weekday indices 0=Sunday..6=Saturday"
    )

    # Exception fields (children only)
    parent_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("events.id"),
        nullable=True,
        doc="Master event this row overrides"
    )

    exception_date: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="Original start of the overridden occurrence (UTC)"
    )

    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        doc="Tombstone flag: the overridden occurrence is deleted"
    )

    # Relationships
    group: Mapped["FamilyGroup"] = relationship(
        "FamilyGroup",
        back_populates="events",
        doc="Group this event belongs to"
    )

    creator: Mapped["FamilyMember"] = relationship(
        "FamilyMember",
        foreign_keys=[created_by],
        doc="Family member who created this event"
    )

    attendees: Mapped[list["EventAttendee"]] = relationship(
        "EventAttendee",
        back_populates="event",
        doc="Event attendees (many-to-many via EventAttendee)"
    )

    parent_event: Mapped[Optional["Event"]] = relationship(
        "Event",
        remote_side="Event.id",
        foreign_keys=[parent_event_id],
        doc="Master event if this is an exception"
    )

    exceptions: Mapped[list["Event"]] = relationship(
        "Event",
        foreign_keys="Event.parent_event_id",
        overlaps="parent_event",
        doc="Exception and tombstone rows for this master"
    )

    # Indexes for common queries
    __table_args__ = (
        # One override row per master occurrence
        UniqueConstraint("parent_event_id", "exception_date", name="uq_event_exception_date"),
        Index("idx_event_group", "family_group_id"),
        Index("idx_event_parent", "parent_event_id"),
        Index("idx_event_created_by", "created_by"),
        # Composite index for time-range queries
        Index("idx_event_time_range", "family_group_id", "start_at", "end_at"),
        Index("idx_event_recurrence", "family_group_id", "recurrence_rule", "recurrence_end_at"),
    )

    @property
    def is_exception(self) -> bool:
        """True for exception and tombstone rows."""
        return self.parent_event_id is not None

    @property
    def is_recurring(self) -> bool:
        """True for recurring masters."""
        return (
            self.parent_event_id is None
            and self.recurrence_rule is not None
            and self.recurrence_rule != "none"
        )

    @property
    def duration(self) -> timedelta:
        return self.end_at - self.start_at

    def __repr__(self) -> str:
        """String representation showing title and time."""
        return f"<Event(title='{self.title}', start='{self.start_at}', rule='{self.recurrence_rule}')>"


class EventAttendee(BaseModel):
    """
    Many-to-many association between Events and FamilyMembers.

    The full attendee set of an event is replaced wholesale on update,
    never diffed.
    """

    __tablename__ = "event_attendees"

    event_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("events.id"),
        nullable=False,
        doc="Event ID"
    )

    family_member_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("family_members.id"),
        nullable=False,
        doc="Family member ID"
    )

    # Relationships
    event: Mapped["Event"] = relationship(
        "Event",
        back_populates="attendees",
        doc="Event this attendance is for"
    )

    family_member: Mapped["FamilyMember"] = relationship(
        "FamilyMember",
        back_populates="attendances",
        doc="Family member attending the event"
    )

    # Indexes and constraints
    __table_args__ = (
        # Unique constraint: one attendance record per event-member pair
        UniqueConstraint("event_id", "family_member_id", name="uq_event_attendee"),
        Index("idx_attendee_event", "event_id"),
        Index("idx_attendee_member", "family_member_id"),
    )

    def __repr__(self) -> str:
        """String representation showing event and member IDs."""
        return f"<EventAttendee(event_id={self.event_id}, member_id={self.family_member_id})>"
