from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import AsyncAdaptedQueuePool

from Config.settings import Settings

# --- Connection Pool Configuration ---
# pool_size: The number of connections to keep open always
# max_overflow: The number of connections to allow beyond pool_size during spikes
# pool_timeout: Seconds to wait before giving up on getting a connection from the pool
# pool_recycle: Seconds after which a connection is closed and replaced (prevents "stale" connections)


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the process-wide async engine. Called once from the app lifespan."""
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not set")
    return create_async_engine(
        settings.database_url,
        poolclass=AsyncAdaptedQueuePool,  # Explicitly using the async-safe queue pool
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        echo=False                       # Set to True to see raw SQL logs
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# --- Testing the Pool ---
if __name__ == "__main__":
    import asyncio
    from Config.settings import get_settings

    async def check_pool_connection():
        settings = get_settings()
        engine = build_engine(settings)
        try:
            async with build_session_factory(engine)() as session:
                # Running a query to verify the pooled connection works
                res = await session.execute(text("SELECT current_setting('max_connections');"))
                max_conns = res.scalar()
                print(f"✅ Pool initialized successfully.")
                print(f"📊 PostgreSQL Max Connections: {max_conns}")
                print(f"🔗 Pool Size: {settings.db_pool_size} (+{settings.db_max_overflow} overflow)")
        except Exception as e:
            print(f"❌ Pool Connection Failed: {e}")
        finally:
            await engine.dispose()

    asyncio.run(check_pool_connection())
