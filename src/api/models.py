"""
Pydantic request and response models for the Family Calendar API.
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.services.recurrence import RecurrenceRule
from src.services.types import EventInput, EventPatch, RecurrenceSpec


def _strip_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not v.strip():
        raise ValueError("Title cannot be empty")
    return v.strip()


# =============================================================================
# Request Models
# =============================================================================


class RecurrenceRequest(BaseModel):
    """Recurrence definition for a new master event."""

    rule: RecurrenceRule = Field(
        default=RecurrenceRule.NONE,
        description="none, daily, weekly, monthly or yearly",
    )
    interval: int = Field(default=1, ge=1, description="Step between occurrences")
    end_at: Optional[datetime] = Field(
        None,
        description="Inclusive end of the recurrence (ISO 8601)",
    )
    days_of_week: Optional[list[int]] = Field(
        None,
        description="Weekly only: weekday indices, 0=Sunday .. 6=Saturday",
        examples=[[1, 3, 5]],
    )

    def to_spec(self) -> RecurrenceSpec:
        return RecurrenceSpec(
            rule=self.rule,
            interval=self.interval,
            end_at=self.end_at,
            days_of_week=self.days_of_week,
        )


class CreateEventRequest(BaseModel):
    """Request to create an event or recurring master."""

    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        examples=["Swimming lesson"],
    )
    start_at: datetime = Field(..., description="Start time (ISO 8601)")
    end_at: datetime = Field(..., description="End time (ISO 8601)")
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=200)
    is_all_day: bool = False
    attendee_ids: list[UUID] = Field(
        default_factory=list,
        description="Attending members (defaults to the creator)",
    )
    source: Literal["manual", "ai_scan"] = "manual"
    recurrence: Optional[RecurrenceRequest] = None

    @field_validator("title")
    @classmethod
    def validate_title_not_empty(cls, v: str) -> str:
        return _strip_title(v)

    def to_input(self) -> EventInput:
        return EventInput(
            title=self.title,
            start_at=self.start_at,
            end_at=self.end_at,
            description=self.description,
            location=self.location,
            is_all_day=self.is_all_day,
            attendee_ids=list(self.attendee_ids),
            source=self.source,
        )


class UpdateEventRequest(BaseModel):
    """
    Partial update for an event.

    Only fields present in the request body are applied; an explicit null
    clears an optional field.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=200)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    is_all_day: Optional[bool] = None
    attendee_ids: Optional[list[UUID]] = None
    recurrence_rule: Optional[RecurrenceRule] = None
    recurrence_interval: Optional[int] = Field(None, ge=1)
    recurrence_end_at: Optional[datetime] = None
    recurrence_days_of_week: Optional[list[int]] = None

    @field_validator("title")
    @classmethod
    def validate_title_not_empty(cls, v: Optional[str]) -> Optional[str]:
        return _strip_title(v)

    @model_validator(mode="after")
    def validate_required_fields_not_cleared(self):
        for name in ("title", "start_at", "end_at", "is_all_day", "recurrence_interval"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def to_patch(self) -> EventPatch:
        patch = EventPatch()
        for name in self.model_fields_set:
            value = getattr(self, name)
            if name == "recurrence_rule" and value is None:
                value = RecurrenceRule.NONE
            if name == "attendee_ids" and value is not None:
                value = list(value)
            setattr(patch, name, value)
        return patch


class CreateExceptionRequest(BaseModel):
    """Override for one occurrence of a recurring master."""

    instance_date: datetime = Field(
        ...,
        description="Original start of the occurrence being overridden",
    )
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=200)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    is_all_day: Optional[bool] = None
    attendee_ids: Optional[list[UUID]] = None

    @field_validator("title")
    @classmethod
    def validate_title_not_empty(cls, v: Optional[str]) -> Optional[str]:
        return _strip_title(v)

    def to_patch(self) -> EventPatch:
        """Fields omitted (or null) inherit from the master."""
        patch = EventPatch()
        for name in self.model_fields_set - {"instance_date"}:
            value = getattr(self, name)
            if value is None and name not in ("description", "location"):
                continue
            if name == "attendee_ids":
                value = list(value)
            setattr(patch, name, value)
        return patch


# =============================================================================
# Response Models
# =============================================================================


class OccurrenceResponse(BaseModel):
    """One calendar entry: regular event, virtual occurrence or exception."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Event ID, or <master id>_<instance> for virtual entries")
    group_id: UUID
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_at: datetime
    end_at: datetime
    is_all_day: bool
    attendee_ids: list[UUID] = Field(default_factory=list)
    recurrence_rule: Optional[str] = None
    master_event_id: Optional[UUID] = None
    master_start_at: Optional[datetime] = None
    master_end_at: Optional[datetime] = None
    instance_date: Optional[datetime] = None
    is_virtual: bool = False


class OccurrenceListResponse(BaseModel):
    """Occurrences in a requested range."""

    range_start: datetime
    range_end: datetime
    occurrences: list[OccurrenceResponse]
    total: int


class EventCreatedResponse(BaseModel):
    """Response for event and exception creation."""

    event_id: UUID
    message: str = "Event created"


class DeleteResponse(BaseModel):
    """Response for delete operations."""

    success: bool = True
    target_id: str
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"]
    version: str
    database_connected: bool
    calendar_timezone: str


class ErrorResponse(BaseModel):
    """Error envelope returned for all failures."""

    error_type: str = Field(..., description="Error category")
    message: str = Field(..., description="Human-readable error message")
    retryable: bool = Field(default=False, description="Whether the request can be retried")
