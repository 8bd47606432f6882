"""
Pytest configuration and fixtures.

Async service tests run against a throwaway SQLite file per test
(aiosqlite) with the production models.
"""
import os
from datetime import timedelta

import pytest

# Set test environment before importing app modules
os.environ["APP_ENV"] = "test"
os.environ["AUTH_ENABLED"] = "false"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ANALYTICS_TIMEZONE"] = "UTC"

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

import app.models.event_log  # noqa: E402,F401
from app.models.database import Base  # noqa: E402
from app.schemas.assessment import ConditionGrade  # noqa: E402
from app.schemas.returns import ReturnCreate  # noqa: E402
from app.services import returns_service, template_service  # noqa: E402
from builders import NOW, make_draft, make_reservation  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def template(db):
    return await template_service.create_template(db, make_draft(), actor="staff-1")


@pytest.fixture
async def returned(db):
    """On-time return, still in its original EXCELLENT condition."""
    reservation = make_reservation(end_date=NOW + timedelta(days=1))
    await returns_service.register_reservation(db, reservation, actor="staff-1")
    return await returns_service.record_return(
        db,
        ReturnCreate(
            reservation_id=reservation.reservation_id,
            return_date=NOW,
            condition_on_return=ConditionGrade.EXCELLENT,
        ),
        actor="staff-1",
        as_of=NOW,
    )
