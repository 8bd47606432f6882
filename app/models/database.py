"""
Async engine, session factory and the atomic unit of work.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import get_settings
from app.core.errors import ConflictError, ConsistencyError, DomainError

logger = structlog.get_logger()
settings = get_settings()


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency. Services commit through atomic(); anything left open is rolled back on close."""
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    One all-or-nothing unit of writes.

        async with atomic(db):
            ... appends / updates ...

    Commits on success. On any failure everything written inside the block
    is rolled back:
      - DomainError        re-raised as is
      - IntegrityError     → ConflictError (unique dedupe key already taken)
      - SQLAlchemyError    → ConsistencyError
    """
    try:
        yield session
        await session.commit()
    except DomainError:
        await session.rollback()
        raise
    except IntegrityError as e:
        await session.rollback()
        logger.info("atomic_unit_conflict", error=str(e.orig))
        raise ConflictError("Operation conflicts with an already recorded event") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("atomic_unit_rolled_back", error=str(e))
        raise ConsistencyError("Atomic unit failed") from e
    except Exception:
        await session.rollback()
        raise
