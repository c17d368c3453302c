from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
import logging
from .config import settings

logger = logging.getLogger(__name__)


def build_async_engine(url: str, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        # SQLite has no pool sizing and needs cross-thread access for aiosqlite
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        url,
        pool_size=20,
        max_overflow=40,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_timeout=20,
        echo=echo,
        connect_args={
            "server_settings": {
                "application_name": "symposium_proctor_api"
            }
        }
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async_engine = build_async_engine(settings.async_database_url, echo=settings.database_echo)
AsyncSessionLocal = build_session_factory(async_engine)

Base = declarative_base()


async def get_async_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


async def create_db_and_tables(engine: AsyncEngine = async_engine):
    # Importing the package registers every mapped class on Base.metadata
    from .. import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)
    logger.info("Database tables created successfully")
