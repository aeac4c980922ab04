"""
FastAPI dependency injection providers.

Provides database sessions, calendar services and member context.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from src.config import get_settings
from src.database import get_db
from src.services.calendar_service import CalendarQueryService
from src.services.event_service import EventService

logger = logging.getLogger(__name__)


def get_db_session():
    """
    Dependency injection for database session.

    Yields a database session and ensures cleanup.
    """
    db = next(get_db())
    try:
        yield db
    finally:
        db.close()


def get_calendar_query_service(
    db: Session = Depends(get_db_session),
) -> CalendarQueryService:
    """Build a query service bound to the request's session and settings."""
    settings = get_settings()
    return CalendarQueryService(
        db,
        tz=settings.calendar_tz,
        max_iterations=settings.recurrence_max_iterations,
    )


def get_event_service(db: Session = Depends(get_db_session)) -> EventService:
    """Build a mutation service bound to the request's session and calendar timezone."""
    return EventService(db, tz=get_settings().calendar_tz)


def get_member_id(
    x_member_id: Optional[str] = Header(None, description="Acting family member ID"),
) -> UUID:
    """
    Extract the acting member from the X-Member-ID header.

    Raises:
        HTTPException: 400 if the header is missing or not a UUID
    """
    if not x_member_id:
        raise HTTPException(status_code=400, detail="X-Member-ID header is required")
    try:
        return UUID(x_member_id)
    except ValueError:
        logger.warning(f"Rejected malformed X-Member-ID header: {x_member_id!r}")
        raise HTTPException(status_code=400, detail="X-Member-ID must be a UUID")
