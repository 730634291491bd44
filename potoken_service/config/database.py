from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///potoken_attempts.db"


def create_session_factory(database_url: str = DEFAULT_DATABASE_URL) -> tuple[AsyncEngine, async_sessionmaker]:
    """Create the async engine and session maker for the attempt history."""
    engine = create_async_engine(database_url, echo=False)
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
    return engine, session_factory
