from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from engagement.core.config import settings
from engagement.models.base import Base


def get_async_database_url(url: str) -> str:
    """Rewrite a plain database URL to the async driver SQLAlchemy needs.

    postgres:// and postgresql:// become postgresql+asyncpg://, and
    sqlite:// becomes sqlite+aiosqlite://. URLs that already name a
    driver are returned unchanged.
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    url = get_async_database_url(url)
    if url.startswith("sqlite"):
        # aiosqlite has no server to ping
        return create_async_engine(url, echo=echo)
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


engine = build_engine(settings.database_url, echo=settings.debug)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_tables(bind: AsyncEngine = engine) -> None:
    """Create the engagement tables if they do not exist."""
    # Import models to register them with Base
    from engagement.models import activity, gamification  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncSession:
    """Dependency that provides a database session.

    Anything left uncommitted when the request fails is rolled back.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
