"""
Pytest configuration and fixtures

Tests run against a single shared in-memory SQLite database created from
the models. Every table is emptied after each test, so data committed by
API calls or tasks never leaks into the next test.
"""
import pytest
import sys
import os
from uuid import uuid4
from datetime import date, timedelta

# Must be set before core.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_FORMAT"] = "text"

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import Base, SessionLocal, engine  # noqa: E402
import models  # noqa: E402,F401
from services.metric_store import MetricStore, MetricType  # noqa: E402

Base.metadata.create_all(engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    """Empty every table after the test."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function")
def db_session():
    """
    Session for service-level tests.

    Changes are rolled back at the end; anything a test commits is removed
    by the table cleanup.
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def athlete_id():
    return uuid4()


@pytest.fixture
def target_date():
    return date(2024, 3, 15)


@pytest.fixture
def seed_metrics(db_session):
    """
    Write samples for an athlete.

    Usage: seed_metrics(athlete_id, MetricType.HRV, {date: value, ...})
    """
    store = MetricStore(db_session)

    def _seed(athlete, metric_type, values):
        for day, value in values.items():
            store.upsert(athlete, metric_type, day, value)
        db_session.commit()

    return _seed


@pytest.fixture
def seed_daily_load(seed_metrics):
    """
    Training load on consecutive days ending on `end`.

    seed_daily_load(athlete_id, end, acute=..., chronic_rest=...) writes
    `acute` on each of the last 7 days and `chronic_rest` on the 21 days
    before them, so acute_7d == acute and chronic_28d == (7*acute + 21*rest) / 28.
    """

    def _seed(athlete, end, acute, chronic_rest):
        values = {}
        for offset in range(28):
            day = end - timedelta(days=offset)
            values[day] = acute if offset < 7 else chronic_rest
        seed_metrics(athlete, MetricType.TRAINING_LOAD, values)

    return _seed
