"""
Family group and member models.

Entities:
- FamilyGroup: A household sharing one calendar (tenant scope for events)
- FamilyMember: A person in the household who can attend events

Member and group management itself lives outside this package; these models
exist so events can reference their owning group and attendees.
"""

import uuid
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import BaseModel

# Avoid circular imports for type hints
if TYPE_CHECKING:
    from src.models.events import Event, EventAttendee


class FamilyGroup(BaseModel):
    """
    A household sharing a calendar.

    Members join a group with its invite code. Every event belongs to
    exactly one group.
    """

    __tablename__ = "family_groups"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Group display name (e.g., 'The Tanakas')"
    )

    invite_code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        doc="Code other members use to join the group"
    )

    # Relationships
    members: Mapped[list["FamilyMember"]] = relationship(
        "FamilyMember",
        back_populates="group",
        doc="Members of this group"
    )

    events: Mapped[list["Event"]] = relationship(
        "Event",
        back_populates="group",
        doc="Events owned by this group"
    )

    def __repr__(self) -> str:
        """String representation showing name."""
        return f"<FamilyGroup(name='{self.name}')>"


class FamilyMember(BaseModel):
    """
    Represents a person in the household who participates in events.

    Each member has a display name, a role in the family and a color used
    to tint their events.
    """

    __tablename__ = "family_members"

    family_group_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("family_groups.id"),
        nullable=False,
        doc="Group this member belongs to"
    )

    user_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        doc="Identifier of the authenticated user account (external)"
    )

    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Name shown on the calendar"
    )

    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Role in family: 'papa', 'mama', 'daughter', 'son'"
    )

    color: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="blue",
        doc="Display color: 'blue', 'pink', 'yellow', 'green'"
    )

    # Relationships
    group: Mapped["FamilyGroup"] = relationship(
        "FamilyGroup",
        back_populates="members",
        doc="Group this member belongs to"
    )

    attendances: Mapped[list["EventAttendee"]] = relationship(
        "EventAttendee",
        back_populates="family_member",
        doc="Events this member attends"
    )

    # Indexes
    __table_args__ = (
        Index("idx_family_member_group", "family_group_id"),
        Index("idx_family_member_user", "user_id"),
    )

    def __repr__(self) -> str:
        """String representation showing name and role."""
        return f"<FamilyMember(name='{self.display_name}', role='{self.role}')>"
