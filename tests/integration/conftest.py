"""Integration test fixtures for the HTTP API.

The app runs against the same in-memory database as the unit fixtures;
the session factory and settings dependencies are overridden.
"""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from billing_engine.api.app import create_app
from billing_engine.api.dependencies import get_app_settings, get_db_session_factory
from billing_engine.events import AuditEvent


@pytest.fixture
def audit_log() -> list[AuditEvent]:
    """Audit events dispatched by the app during a test."""
    return []


@pytest.fixture
async def client(session_factory, settings, audit_log) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app()
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.state.emitter.on_all(audit_log.append)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
