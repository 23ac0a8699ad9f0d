"""
Database engine and session factory
"""
from typing import Any, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.config import DatabaseSettings, settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """Make sure the database URL uses an async driver"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    if url.drivername not in _ASYNC_DRIVERS:
        raise ValueError(
            f"Unsupported database driver: {url.drivername}. Use an async driver or update DATABASE__URL"
        )
    return url.set(drivername=_ASYNC_DRIVERS[url.drivername]).render_as_string(hide_password=False)


def _engine_options(db: DatabaseSettings) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": db.echo, "pool_pre_ping": True}
    # sqlite (tests, local runs) has no server-side pool to tune
    if not make_url(db.url).drivername.startswith("sqlite"):
        options.update(
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_recycle=db.pool_recycle,
        )
    return options


engine = create_async_engine(_build_async_url(settings.database.url), **_engine_options(settings.database))

# order locks span a whole unit of work, entities are mapped before commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def create_tables():
    """Create every table registered on the models metadata (development only)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine():
    await engine.dispose()
