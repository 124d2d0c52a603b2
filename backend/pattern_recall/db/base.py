"""
Scheduler Database

One async engine and session factory shared by the API process. Every
scheduler table (questions, cards, review history, learner settings)
hangs off the same declarative Base so init_db and Alembic see the whole
schema.

Sessions:
- get_db: one session per request; the request's card and history writes
  commit together when the route returns, or roll back if it raises
- async_session_maker: for code outside a request (startup, scripts)

    async with async_session_maker() as session:
        repository = SqlCardRepository(session)
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from pattern_recall.config import settings, yaml_config


# database.* in config/default.yaml; unset keys keep SQLAlchemy's defaults
db_config: dict[str, Any] = yaml_config.get("database", {})
pool_options: dict[str, int] = {
    "pool_size": db_config.get("pool_size", 5),
    "max_overflow": db_config.get("max_overflow", 10),
    "pool_timeout": db_config.get("pool_timeout", 30),
}

engine = create_async_engine(settings.POSTGRES_URL, echo=settings.DEBUG, **pool_options)

# Cards stay readable after commit; the service returns them to the router
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the scheduler tables."""

    pass


# Table classes register on Base.metadata at import
from pattern_recall.db import models  # noqa: F401, E402


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: a request-scoped session that commits on success."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Create missing scheduler tables at startup. Deployed databases use Alembic."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
