"""Pytest configuration and fixtures for lead notifier tests."""

import json
import os

# Settings are read at import time by the Celery app and task modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/1")  # Use DB 1 for testing

from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lead_notifier.config import OneSignalSettings, Settings
from lead_notifier.database.models import Base
from lead_notifier.models.delivery import LeadSubmitted
from lead_notifier.services.onesignal_client import OneSignalClient


# Test database URL (in-memory SQLite for unit tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class ProviderStub:
    """Records requests sent to the OneSignal API and replays canned responses."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.requests: List[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def json_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests if request.content]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected provider call: {request.method} {request.url}")
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def session(engine):
    """Create test database session."""
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def onesignal_settings():
    """Enabled and configured provider settings."""
    return OneSignalSettings(
        enabled=True,
        app_id="0a1b2c3d-4e5f-6789-abcd-ef0123456789",
        rest_api_key="test-rest-api-key",
        api_url="https://onesignal.test/api/v1",
        timeout_seconds=5.0,
    )


@pytest.fixture
def make_settings(onesignal_settings) -> Callable[..., Settings]:
    """Build application settings around a provider configuration."""

    def _make(onesignal: Optional[OneSignalSettings] = None, **overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "service_name": "lead-notifier-test",
            "environment": "test",
            "database_url": TEST_DATABASE_URL,
            "redis_url": "redis://localhost:6379/1",
            "log_level": "DEBUG",
            "onesignal": onesignal or onesignal_settings,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def provider():
    """Factory for a provider stub returning the given responses in order."""

    def _provider(*responses: Any) -> ProviderStub:
        return ProviderStub(list(responses))

    return _provider


@pytest.fixture
def make_client(onesignal_settings):
    """Build a OneSignalClient wired to a provider stub."""

    def _make(stub: ProviderStub, settings: Optional[OneSignalSettings] = None) -> OneSignalClient:
        return OneSignalClient(settings or onesignal_settings, transport=stub.transport)

    return _make


@pytest.fixture
def lead_event():
    """A submitted lead with a real-looking email."""
    return LeadSubmitted(
        lead_id="2b0c8f7e-6a2d-4f1b-9c3e-5d4a3b2c1d0e",
        email="jane.doe@acme-corp.com",
        name="Jane Doe",
        platform="wordpress",
        website_type="ecommerce",
        user_agent="Mozilla/5.0",
        ip_address="203.0.113.7",
        metadata={"source": "landing-page"},
    )


@pytest.fixture
def celery_config():
    """Celery configuration for testing."""
    return {
        "broker_url": "memory://",
        "task_always_eager": True,  # Execute tasks synchronously for testing
        "task_eager_propagates": True,  # Propagate exceptions in eager mode
    }


@pytest.fixture
def celery_app(celery_config):
    """Celery app fixture for testing tasks."""
    from lead_notifier.celery_app import app

    app.conf.update(celery_config)
    return app
