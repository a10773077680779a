"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and isolated settings
WHY: Tests must never touch the developer's database or log file
HOW: Point settings at a temp dir before the package is imported; shared store fixtures
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

_TEST_DIR = tempfile.mkdtemp(prefix="marketplace_chat_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR}/test.db"
os.environ["LOG_FILE"] = f"{_TEST_DIR}/logs/app.log"
os.environ["BOT_REPLY_DELAY_SECONDS"] = "0"
os.environ["CHAT_HTTP_RETRY_DELAY"] = "0"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace_chat.core.database import Base
from marketplace_chat.core import models  # noqa: F401
from marketplace_chat.services.conversation_store import ConversationStore


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "scenario: End-to-end chat scenarios (offer flow, widget close, fallback, typing)"
    )


class FakeClock:
    """
    Deterministic wall clock.

    Each call returns the current instant; advance() moves it forward.
    """

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeMonotonic:
    """Monotonic seconds counter for the presence tracker."""

    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def store(clock):
    """In-memory conversation store driven by the fake clock."""
    return ConversationStore(clock=clock)


@pytest.fixture
def conversation(store):
    """Open conversation between customer c1 and seller s1 about vehicle 42."""
    return store.open_conversation(
        customer_id="c1",
        seller_id="s1",
        vehicle_id=42,
        vehicle_name="2019 Honda City",
        vehicle_price=850000,
        customer_name="Asha",
    )


@pytest.fixture
def sql_session_factory():
    """
    Session factory over a private in-memory SQLite database.

    WHAT: Fresh schema per test
    WHY: Repository and support chat tests need real SQL without a file
    HOW: StaticPool keeps the single in-memory connection alive
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    yield factory
    engine.dispose()
