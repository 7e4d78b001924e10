from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

settings = get_settings()

# Admission reads must see rows committed while this transaction waited on the facility lock.
engine = create_async_engine(
    settings.database_url,
    echo=settings.echo_sql,
    isolation_level="READ COMMITTED",
    pool_pre_ping=True,
    pool_recycle=3600,
)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession, autoflush=False)
