"""
Service-layer data types.

- UnifiedOccurrence: one entry in a calendar range result (regular event,
  virtual occurrence of a master, or concrete exception)
- EventInput / RecurrenceSpec: full field sets for creating events
- EventPatch: partial update where every field is optional; UNSET marks a
  field that was not supplied so None can still mean "clear this field"
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from typing import Any, Optional, Union
from uuid import UUID

from src.services.recurrence import RecurrenceRule


class _Unset:
    """Sentinel type for patch fields that were not supplied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()


@dataclass
class UnifiedOccurrence:
    """
    Normalized occurrence returned by the calendar query service.

    Provenance fields let callers choose an edit scope later:
    - master_event_id / master_start_at / master_end_at: "apply to all"
    - instance_date (virtual occurrences only): "this occurrence only"
    """

    id: str
    group_id: UUID
    title: str
    start_at: datetime
    end_at: datetime
    is_all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    attendee_ids: list[UUID] = field(default_factory=list)
    recurrence_rule: Optional[str] = None
    master_event_id: Optional[UUID] = None
    master_start_at: Optional[datetime] = None
    master_end_at: Optional[datetime] = None
    instance_date: Optional[datetime] = None
    is_virtual: bool = False

    @property
    def duration(self) -> timedelta:
        return self.end_at - self.start_at


@dataclass
class RecurrenceSpec:
    """Recurrence definition for a master event."""

    rule: Union[RecurrenceRule, str] = RecurrenceRule.NONE
    interval: int = 1
    end_at: Optional[datetime] = None
    days_of_week: Optional[list[int]] = None


@dataclass
class EventInput:
    """Complete field set for a new event or exception."""

    title: str
    start_at: datetime
    end_at: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    is_all_day: bool = False
    attendee_ids: list[UUID] = field(default_factory=list)
    source: str = "manual"


@dataclass
class EventPatch:
    """
    Partial update for an event.

    Fields left as UNSET are not touched. attendee_ids, when supplied,
    replaces the full attendee set.
    """

    title: Union[str, _Unset] = UNSET
    description: Union[str, None, _Unset] = UNSET
    location: Union[str, None, _Unset] = UNSET
    start_at: Union[datetime, _Unset] = UNSET
    end_at: Union[datetime, _Unset] = UNSET
    is_all_day: Union[bool, _Unset] = UNSET
    attendee_ids: Union[list[UUID], None, _Unset] = UNSET
    recurrence_rule: Union[RecurrenceRule, str, None, _Unset] = UNSET
    recurrence_interval: Union[int, _Unset] = UNSET
    recurrence_end_at: Union[datetime, None, _Unset] = UNSET
    recurrence_days_of_week: Union[list[int], None, _Unset] = UNSET

    def supplied(self) -> dict[str, Any]:
        """Fields that were explicitly supplied, as a dict."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    @property
    def touches_recurrence(self) -> bool:
        return any(name.startswith("recurrence_") for name in self.supplied())


# Columns apply_patch may write; attendee_ids is handled by the service
PATCHABLE_COLUMNS = (
    "title",
    "description",
    "location",
    "start_at",
    "end_at",
    "is_all_day",
    "recurrence_rule",
    "recurrence_interval",
    "recurrence_end_at",
    "recurrence_days_of_week",
)


def apply_patch(target, patch: EventPatch) -> list[str]:
    """
    Merge supplied patch fields onto a target object, field by field.

    Args:
        target: Event model (or any object with matching attributes)
        patch: Patch to apply

    Returns:
        Names of the attributes that were written
    """
    written = []
    for name, value in patch.supplied().items():
        if name not in PATCHABLE_COLUMNS:
            continue
        if name == "recurrence_rule" and value is not None:
            value = getattr(value, "value", value)
            if value == RecurrenceRule.NONE.value:
                value = None
        setattr(target, name, value)
        written.append(name)
    return written
