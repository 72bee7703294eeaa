"""
Async database engine, session factory and declarative base.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from parking_engine.config import DATABASE_ECHO, DATABASE_URL

engine = create_async_engine(DATABASE_URL, echo=DATABASE_ECHO)
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def init_db():
    # Import models so their tables are registered on Base.metadata
    from parking_engine import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    async with SessionLocal() as session:
        yield session
