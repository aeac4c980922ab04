"""
FastAPI application for the Family Calendar.

This is the main entry point for the HTTP API, providing:
- Calendar range, month, week and "today" queries
- Event management endpoints (create, update, delete)
- Single-occurrence edits and deletes for recurring events
- Health endpoint
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.api.dependencies import (
    get_calendar_query_service,
    get_db_session,
    get_event_service,
    get_member_id,
)
from src.api.middleware import RequestLoggingMiddleware
from src.api.models import (
    CreateEventRequest,
    CreateExceptionRequest,
    DeleteResponse,
    EventCreatedResponse,
    HealthResponse,
    OccurrenceListResponse,
    OccurrenceResponse,
    UpdateEventRequest,
)
from src.config import get_settings
from src.services.calendar_service import CalendarQueryService, sort_occurrences
from src.services.event_service import EventService
from src.services.exceptions import (
    CalendarError,
    EventNotFoundError,
    InvalidEventError,
    InvalidRecurrenceError,
)
from src.services import queries
from src.services.recurrence import parse_virtual_id
from src.services.resolver import occurrence_from_event

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


# =============================================================================
# Application Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Startup
    logger.info("Starting Family Calendar API")
    if settings.is_development:
        from src.database import init_db

        init_db()
    logger.info(f"Family Calendar API started (timezone={settings.calendar_timezone})")

    yield

    # Shutdown
    logger.info("Shutting down Family Calendar API")


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title="Family Calendar API",
    description="""
# Family Calendar API

Shared calendar for a family group with recurring events.

## Occurrences

Range queries return a flat list of occurrences:
- regular events
- **virtual** occurrences expanded from recurring masters
  (`id` = `<master id>_<YYYYMMDDTHHMMSSZ>`, `is_virtual=true`)
- edited single occurrences (exceptions)

Deleted single occurrences never appear.

## Editing a recurring event

- **PATCH /events/{master_id}** - apply to all occurrences
- **POST /events/{master_id}/exceptions** - edit this occurrence only
- **DELETE /events/{master_id}/instances** - delete this occurrence only
- **DELETE /occurrences/{occurrence_id}** - delete by occurrence id

## Error Handling

- **404** - Event not found
- **422** - Invalid event or recurrence
- **500** - Server error
    """,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Exception Handlers
# =============================================================================


def _error_response(status_code: int, error_type: str, exc: CalendarError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error_type": error_type,
            "message": exc.message,
            "retryable": exc.retryable,
        },
    )


@app.exception_handler(EventNotFoundError)
async def not_found_handler(request, exc: EventNotFoundError):
    """Unknown event ids map to 404."""
    return _error_response(404, "not_found", exc)


@app.exception_handler(InvalidRecurrenceError)
async def invalid_recurrence_handler(request, exc: InvalidRecurrenceError):
    """Invalid recurrence definitions map to 422."""
    return _error_response(422, "invalid_recurrence", exc)


@app.exception_handler(InvalidEventError)
async def invalid_event_handler(request, exc: InvalidEventError):
    """Inconsistent event fields map to 422."""
    return _error_response(422, "invalid_event", exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_type": "http_error",
            "message": exc.detail,
            "retryable": exc.status_code >= 500,
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request, exc: SQLAlchemyError):
    """Database failures are reported as retryable 500s."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error_type": "database_error",
            "message": "A database error occurred",
            "retryable": True,
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error_type": "internal_error",
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )


def _as_aware(dt: datetime) -> datetime:
    """Treat naive query datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _occurrence_list(
    occurrences,
    range_start: datetime,
    range_end: datetime,
) -> OccurrenceListResponse:
    return OccurrenceListResponse(
        range_start=range_start,
        range_end=range_end,
        occurrences=[OccurrenceResponse.model_validate(o) for o in occurrences],
        total=len(occurrences),
    )


# =============================================================================
# Health & Status Endpoints
# =============================================================================


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    tags=["System"],
)
def health_check(db: Session = Depends(get_db_session)):
    """
    Check API health status.

    Returns:
        Health status including database connectivity
    """
    try:
        db.execute(text("SELECT 1"))
        database_connected = True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        database_connected = False

    return HealthResponse(
        status="healthy" if database_connected else "unhealthy",
        version=API_VERSION,
        database_connected=database_connected,
        calendar_timezone=get_settings().calendar_timezone,
    )


# =============================================================================
# Calendar Query Endpoints
# =============================================================================


@app.get(
    "/groups/{group_id}/events",
    response_model=OccurrenceListResponse,
    summary="List occurrences in a range",
    description="Every occurrence overlapping [start, end], sorted for display.",
    tags=["Calendar"],
)
def list_events(
    group_id: UUID,
    start: datetime = Query(..., description="Range start (ISO 8601)"),
    end: datetime = Query(..., description="Range end, inclusive (ISO 8601)"),
    service: CalendarQueryService = Depends(get_calendar_query_service),
) -> OccurrenceListResponse:
    """List a group's occurrences between start and end."""
    start, end = _as_aware(start), _as_aware(end)
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")

    occurrences = sort_occurrences(service.get_events_in_range(group_id, start, end))
    return _occurrence_list(occurrences, start, end)


@app.get(
    "/groups/{group_id}/events/month/{year}/{month}",
    response_model=OccurrenceListResponse,
    summary="List occurrences in a calendar month",
    tags=["Calendar"],
)
def list_month_events(
    group_id: UUID,
    year: int,
    month: int,
    service: CalendarQueryService = Depends(get_calendar_query_service),
) -> OccurrenceListResponse:
    """List a group's occurrences for one month in the calendar timezone."""
    if not 1 <= month <= 12 or not 1 <= year <= 9998:
        raise HTTPException(status_code=400, detail=f"Invalid month: {year}-{month}")

    start, end = service.month_range(year, month)
    return _occurrence_list(service.get_month_events(group_id, year, month), start, end)


@app.get(
    "/groups/{group_id}/events/week",
    response_model=OccurrenceListResponse,
    summary="List occurrences in a week",
    description="The Sunday-starting week containing `day` (default: today).",
    tags=["Calendar"],
)
def list_week_events(
    group_id: UUID,
    day: Optional[date] = Query(None, description="Any day in the week (YYYY-MM-DD)"),
    service: CalendarQueryService = Depends(get_calendar_query_service),
) -> OccurrenceListResponse:
    """List a group's occurrences for one week."""
    if day is None:
        day = datetime.now(service.timezone).date()

    start, end = service.week_range(day)
    return _occurrence_list(service.get_week_events(group_id, day), start, end)


@app.get(
    "/groups/{group_id}/events/today",
    response_model=OccurrenceListResponse,
    summary="List occurrences starting for the rest of today",
    tags=["Calendar"],
)
def list_today_events(
    group_id: UUID,
    service: CalendarQueryService = Depends(get_calendar_query_service),
) -> OccurrenceListResponse:
    """List occurrences starting between now and the end of today."""
    now = datetime.now(timezone.utc)
    _, end = service.day_range(now.astimezone(service.timezone).date())
    occurrences = service.get_events_starting_today(group_id, now=now)
    return _occurrence_list(occurrences, now, end)


# =============================================================================
# Event Endpoints
# =============================================================================


@app.post(
    "/groups/{group_id}/events",
    response_model=EventCreatedResponse,
    status_code=201,
    summary="Create event",
    description="""
Create a regular event, or a recurring master when `recurrence` is given.

The acting member is read from the `X-Member-ID` header and becomes the
sole attendee when `attendee_ids` is empty.
    """,
    responses={
        201: {"description": "Event created"},
        400: {"description": "Missing or malformed X-Member-ID"},
        422: {"description": "Invalid event or recurrence"},
    },
    tags=["Events"],
)
def create_event(
    group_id: UUID,
    request: CreateEventRequest,
    member_id: UUID = Depends(get_member_id),
    service: EventService = Depends(get_event_service),
) -> EventCreatedResponse:
    """Create an event in a family group."""
    logger.info(f"Creating event for member {member_id}: '{request.title[:50]}'")

    recurrence = request.recurrence.to_spec() if request.recurrence else None
    event_id = service.create_event(group_id, member_id, request.to_input(), recurrence)
    return EventCreatedResponse(event_id=event_id)


@app.patch(
    "/events/{event_id}",
    response_model=OccurrenceResponse,
    summary="Update event",
    description="""
Partially update an event. On a recurring master this applies to every
occurrence ("apply to all"). Supplying `attendee_ids` replaces the full
attendee set.
    """,
    responses={
        404: {"description": "Event not found"},
        422: {"description": "Invalid event or recurrence"},
    },
    tags=["Events"],
)
def update_event(
    event_id: UUID,
    request: UpdateEventRequest,
    db: Session = Depends(get_db_session),
    service: EventService = Depends(get_event_service),
) -> OccurrenceResponse:
    """Apply a partial update and return the stored event."""
    service.update_event(event_id, request.to_patch())

    event = queries.get_event_by_id(db, event_id)
    attendee_map = queries.get_attendee_map(db, [event.id])
    occurrence = occurrence_from_event(event, attendee_map)
    occurrence.recurrence_rule = event.recurrence_rule
    return OccurrenceResponse.model_validate(occurrence)


@app.delete(
    "/events/{event_id}",
    response_model=DeleteResponse,
    summary="Delete event",
    description="""
Delete an event. Deleting a recurring master also deletes all of its
single-occurrence edits and deletions. Deleting a single-occurrence edit
restores the original occurrence.
    """,
    responses={404: {"description": "Event not found"}},
    tags=["Events"],
)
def delete_event(
    event_id: UUID,
    service: EventService = Depends(get_event_service),
) -> DeleteResponse:
    """Delete an event (and, for a master, its whole series)."""
    service.delete_event(event_id)
    return DeleteResponse(target_id=str(event_id), message="Event deleted")


# =============================================================================
# Single Occurrence Endpoints
# =============================================================================


@app.post(
    "/events/{event_id}/exceptions",
    response_model=EventCreatedResponse,
    status_code=201,
    summary="Edit one occurrence",
    description="""
Override one occurrence of a recurring master ("this occurrence only").
Omitted fields inherit from the master.
    """,
    responses={
        404: {"description": "Master not found"},
        422: {"description": "Not a recurring master, or invalid fields"},
    },
    tags=["Occurrences"],
)
def create_exception(
    event_id: UUID,
    request: CreateExceptionRequest,
    service: EventService = Depends(get_event_service),
) -> EventCreatedResponse:
    """Create (or update) the override for one occurrence."""
    exception_id = service.create_exception(
        event_id,
        _as_aware(request.instance_date),
        request.to_patch(),
    )
    return EventCreatedResponse(event_id=exception_id, message="Occurrence updated")


@app.delete(
    "/events/{event_id}/instances",
    response_model=DeleteResponse,
    summary="Delete one occurrence",
    description="Delete one occurrence of a recurring master. Idempotent.",
    responses={
        404: {"description": "Master not found"},
        422: {"description": "Not a recurring master"},
    },
    tags=["Occurrences"],
)
def delete_instance(
    event_id: UUID,
    instance_date: datetime = Query(..., description="Original start of the occurrence"),
    service: EventService = Depends(get_event_service),
) -> DeleteResponse:
    """Delete a single occurrence by master id and instance date."""
    service.delete_instance(event_id, _as_aware(instance_date))
    return DeleteResponse(target_id=str(event_id), message="Occurrence deleted")


@app.delete(
    "/occurrences/{occurrence_id}",
    response_model=DeleteResponse,
    summary="Delete by occurrence id",
    description="""
Delete whatever a calendar entry's `id` refers to: a virtual occurrence id
deletes that one occurrence, a concrete id deletes the stored event.
    """,
    responses={404: {"description": "Occurrence not found"}},
    tags=["Occurrences"],
)
def delete_occurrence(
    occurrence_id: str,
    service: EventService = Depends(get_event_service),
) -> DeleteResponse:
    """Delete an occurrence by the id returned from a range query."""
    decoded = parse_virtual_id(occurrence_id)
    if decoded is not None:
        master_id, instance_date = decoded
        service.delete_instance(master_id, instance_date)
        return DeleteResponse(target_id=occurrence_id, message="Occurrence deleted")

    try:
        event_id = UUID(occurrence_id)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Occurrence {occurrence_id} not found")

    service.delete_event(event_id)
    return DeleteResponse(target_id=occurrence_id, message="Event deleted")


# =============================================================================
# Run with Uvicorn
# =============================================================================


def run_server(host: Optional[str] = None, port: Optional[int] = None, reload: Optional[bool] = None):
    """Run the API server with Uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=settings.api_reload if reload is None else reload,
    )


if __name__ == "__main__":
    run_server()
