"""
Integration test fixtures for Family Calendar.

Runs the real application stack (routes, services, calendar arithmetic in
the configured timezone) against a file-backed SQLite database.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.api.dependencies import get_db_session
from src.api.main import app
from src.config import get_settings
from src.models.base import Base
from src.models.family import FamilyGroup, FamilyMember


# =============================================================================
# Pytest Markers Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def tokyo_settings(monkeypatch):
    """Pin the calendar timezone for the duration of a test."""
    monkeypatch.setenv("CALENDAR_TIMEZONE", "Asia/Tokyo")
    monkeypatch.setenv("RECURRENCE_MAX_ITERATIONS", "500")
    get_settings.cache_clear()
    try:
        yield get_settings()
    finally:
        get_settings.cache_clear()


@pytest.fixture
def integration_api_client(tmp_path, tokyo_settings):
    """
    TestClient over a fresh database seeded with one family.

    Returns:
        dict with "client", "group_id", "headers" (acting as Papa) and
        "members" (display name -> member id)
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'family_calendar.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with factory() as session:
        group = FamilyGroup(name="The Suzukis", invite_code="SUZUKI01")
        session.add(group)
        session.flush()
        members = [
            FamilyMember(family_group_id=group.id, display_name=name, role=role, color=color)
            for name, role, color in (
                ("Papa", "papa", "blue"),
                ("Mama", "mama", "pink"),
                ("Kenta", "son", "green"),
            )
        ]
        session.add_all(members)
        session.commit()
        group_id = group.id
        member_ids = {m.display_name: m.id for m in members}

    def override_db_session():
        session = factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = override_db_session
    try:
        yield {
            "client": TestClient(app),
            "group_id": group_id,
            "headers": {"X-Member-ID": str(member_ids["Papa"])},
            "members": member_ids,
        }
    finally:
        app.dependency_overrides.clear()
        engine.dispose()
