"""
Family Calendar API module.

Provides FastAPI HTTP endpoints for calendar queries and event management.
"""

from src.api.main import app, run_server

__all__ = ["app", "run_server"]
