"""
Pytest configuration and fixtures for Family Calendar tests.

Provides database session fixtures and sample data for testing.
"""

from datetime import datetime, timezone
from typing import Generator

import pytest
import sqlalchemy as sa
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.api.dependencies import (
    get_calendar_query_service,
    get_db_session,
    get_event_service,
)
from src.api.main import app
from src.models.base import Base
from src.models.family import FamilyGroup, FamilyMember
from src.models.events import Event, EventAttendee
from src.services.calendar_service import CalendarQueryService
from src.services.event_service import EventService


# Configure SQLite to enforce foreign key constraints in tests
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def utc(*args) -> datetime:
    """Shorthand for an aware UTC datetime."""
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_engine() -> Generator[Engine, None, None]:
    """
    In-memory SQLite engine with all tables created.

    StaticPool keeps a single connection so the database is shared between
    the test thread and TestClient worker threads.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    try:
        yield engine
    finally:
        # Disable foreign key constraints for drop operations
        with engine.begin() as connection:
            connection.execute(sa.text("PRAGMA foreign_keys=OFF"))
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine: Engine) -> sessionmaker:
    """Session factory bound to the test engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Create a clean database session for each test.

    Uses an in-memory SQLite database that is torn down after each test.

    Yields:
        Session: SQLAlchemy session for database operations
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sample_group(db_session: Session) -> FamilyGroup:
    """
    Create a sample FamilyGroup for testing.

    Returns:
        FamilyGroup: A persisted family group
    """
    group = FamilyGroup(name="The Tanakas", invite_code="TANAKA01")
    db_session.add(group)
    db_session.commit()
    db_session.refresh(group)
    return group


@pytest.fixture
def sample_member(db_session: Session, sample_group: FamilyGroup) -> FamilyMember:
    """
    Create a sample FamilyMember for testing.

    Returns:
        FamilyMember: A persisted member of sample_group
    """
    member = FamilyMember(
        family_group_id=sample_group.id,
        display_name="Papa",
        role="papa",
        color="blue",
    )
    db_session.add(member)
    db_session.commit()
    db_session.refresh(member)
    return member


@pytest.fixture
def multiple_family_members(
    db_session: Session,
    sample_group: FamilyGroup,
    sample_member: FamilyMember,
) -> list[FamilyMember]:
    """
    Create several members of the same group.

    Returns:
        list[FamilyMember]: sample_member followed by two more members
    """
    members = [
        FamilyMember(
            family_group_id=sample_group.id,
            display_name="Mama",
            role="mama",
            color="pink",
        ),
        FamilyMember(
            family_group_id=sample_group.id,
            display_name="Hana",
            role="daughter",
            color="yellow",
        ),
    ]

    for member in members:
        db_session.add(member)

    db_session.commit()

    for member in members:
        db_session.refresh(member)

    return [sample_member] + members


@pytest.fixture
def sample_event(
    db_session: Session,
    sample_group: FamilyGroup,
    sample_member: FamilyMember,
) -> Event:
    """
    Create a regular (non-recurring) event attended by its creator.

    Returns:
        Event: Doctor appointment on 2026-02-15 10:00-11:00 UTC
    """
    event = Event(
        family_group_id=sample_group.id,
        created_by=sample_member.id,
        title="Doctor Appointment",
        description="Annual checkup",
        location="Medical Center",
        start_at=utc(2026, 2, 15, 10, 0),
        end_at=utc(2026, 2, 15, 11, 0),
    )
    db_session.add(event)
    db_session.flush()
    db_session.add(EventAttendee(event_id=event.id, family_member_id=sample_member.id))
    db_session.commit()
    db_session.refresh(event)
    return event


@pytest.fixture
def daily_master(
    db_session: Session,
    sample_group: FamilyGroup,
    sample_member: FamilyMember,
) -> Event:
    """
    Create a daily recurring master running for ten days.

    Returns:
        Event: "Standup" daily 09:00-09:30 UTC from 2026-01-01 to 2026-01-10
    """
    master = Event(
        family_group_id=sample_group.id,
        created_by=sample_member.id,
        title="Standup",
        start_at=utc(2026, 1, 1, 9, 0),
        end_at=utc(2026, 1, 1, 9, 30),
        recurrence_rule="daily",
        recurrence_interval=1,
        recurrence_end_at=utc(2026, 1, 10, 9, 0),
    )
    db_session.add(master)
    db_session.flush()
    db_session.add(EventAttendee(event_id=master.id, family_member_id=sample_member.id))
    db_session.commit()
    db_session.refresh(master)
    return master


@pytest.fixture
def api_client(session_factory: sessionmaker):
    """
    TestClient wired to the test database.

    Range queries and mutations use UTC calendar arithmetic so expectations
    can be written in UTC. The lifespan is not entered, so no tables are created on disk.
    """
    def override_db_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_query_service(db: Session = Depends(get_db_session)):
        return CalendarQueryService(db, tz=timezone.utc)

    def override_event_service(db: Session = Depends(get_db_session)):
        return EventService(db, tz=timezone.utc)

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_calendar_query_service] = override_query_service
    app.dependency_overrides[get_event_service] = override_event_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
