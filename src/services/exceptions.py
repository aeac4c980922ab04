"""
Custom exceptions for calendar operations.

Mutation errors propagate to the caller so the API layer can turn them into
validation messages. Recurrence problems found while querying are absorbed by
the query service and never reach the caller.
"""


class CalendarError(Exception):
    """Base exception for calendar operations."""

    retryable: bool = False

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class EventNotFoundError(CalendarError):
    """
    Referenced event does not exist.

    Raised by update, delete, create_exception and delete_instance when the
    target id does not resolve to a stored event.
    """

    def __init__(self, event_id):
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class InvalidRecurrenceError(CalendarError):
    """
    Recurrence definition cannot be expanded.

    Causes:
    - Unsupported rule value
    - Non-positive interval
    - Empty or out-of-range weekday set for a weekly rule
    - Exception targeted at an event that is not a recurring master
    """


class InvalidEventError(CalendarError):
    """
    Event fields are inconsistent.

    Causes:
    - end_at earlier than start_at
    - Empty title on a non-tombstone event
    """
