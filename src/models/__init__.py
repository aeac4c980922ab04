"""
SQLAlchemy models for the Family Calendar.

This module exports all database models for easy importing and
ensures Alembic can discover them for migrations.
"""

# Import base classes
from src.models.base import Base, BaseModel, GUID, UTCDateTime, get_json_type

# Import all models (must be imported for Alembic autogenerate)
from src.models.family import FamilyGroup, FamilyMember
from src.models.events import Event, EventAttendee

# Export all for easy importing
__all__ = [
    # Base classes
    "Base",
    "BaseModel",
    "GUID",
    "UTCDateTime",
    "get_json_type",
    # Family models
    "FamilyGroup",
    "FamilyMember",
    # Event models
    "Event",
    "EventAttendee",
]
