from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from turnchain.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=settings.ECHO_SQL)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(bind=None):
    """Create all tables. For development use only."""
    from turnchain.models.base import Base
    # Import all models so they register with Base.metadata
    from turnchain.models import (  # noqa: F401
        player, season, game, turn, scheduled_job, draft_session,
    )
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
