from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def get_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    if not database_url:
        raise RuntimeError("database url is not set")
    return create_async_engine(database_url, echo=echo, future=True)


def get_session(engine: AsyncEngine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
    )


async def create_all(engine: AsyncEngine):
    """
    Create every table registered on Base. Used by local runs and tests;
    deployed databases are managed by migrations.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
