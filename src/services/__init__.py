"""
Service layer for the Family Calendar.

Provides business logic and data access patterns for:
- Recurrence expansion (daily/weekly/monthly/yearly rules)
- Exception resolution (per-occurrence edits and tombstones)
- Calendar range queries returning unified occurrences
- Event mutations (create/update/delete, single-occurrence overrides)
"""

from src.services.exceptions import (
    CalendarError,
    EventNotFoundError,
    InvalidEventError,
    InvalidRecurrenceError,
)

from src.services.recurrence import (
    MAX_ITERATIONS,
    OccurrenceSpan,
    RecurrenceRule,
    add_calendar_unit,
    as_utc,
    format_recurrence_id,
    format_virtual_id,
    generate_occurrences,
    parse_recurrence_id,
    parse_rule,
    parse_virtual_id,
    shift_instance_date,
    validate_recurrence,
)

from src.services.types import (
    UNSET,
    EventInput,
    EventPatch,
    RecurrenceSpec,
    UnifiedOccurrence,
    apply_patch,
)

from src.services import queries

from src.services.resolver import (
    build_exception_lookup,
    occurrence_from_event,
    resolve_occurrences,
)

from src.services.calendar_service import (
    CalendarQueryService,
    sort_occurrences,
)

from src.services.event_service import EventService

__all__ = [
    # Errors
    "CalendarError",
    "EventNotFoundError",
    "InvalidEventError",
    "InvalidRecurrenceError",
    # Recurrence
    "MAX_ITERATIONS",
    "OccurrenceSpan",
    "RecurrenceRule",
    "add_calendar_unit",
    "as_utc",
    "format_recurrence_id",
    "format_virtual_id",
    "generate_occurrences",
    "parse_recurrence_id",
    "parse_rule",
    "parse_virtual_id",
    "shift_instance_date",
    "validate_recurrence",
    # Types
    "UNSET",
    "EventInput",
    "EventPatch",
    "RecurrenceSpec",
    "UnifiedOccurrence",
    "apply_patch",
    # Queries
    "queries",
    # Resolution
    "build_exception_lookup",
    "occurrence_from_event",
    "resolve_occurrences",
    # Services
    "CalendarQueryService",
    "sort_occurrences",
    "EventService",
]
