"""
Shared fixtures: in-memory SQLite store, a recording notification service
and a controllable clock.
"""

import os

# Keep the package from touching a real database or broker at import time
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite://")
os.environ.setdefault("REMINDER_CELERY_BROKER_URL", "memory://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from healthpath.db.base import Base
from healthpath.reminders import unified_models  # noqa: F401
from healthpath.reminders.coordinator import ReminderLifecycleCoordinator
from healthpath.reminders.repository import SqlAlchemyReminderStore

from .fakes import FakeClock, FakeNotificationService


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlAlchemyReminderStore(session_factory)


@pytest.fixture
def notifier():
    return FakeNotificationService()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(store, notifier, clock):
    return ReminderLifecycleCoordinator(store, notifier, clock=clock)


@pytest.fixture
def daily_pill():
    return {
        "title": "Take pill",
        "reminder_type": "pill",
        "frequency": "daily",
        "time": "08:00",
        "start_date": "2024-01-15T00:00:00Z",
    }
