from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import BigInteger, Integer
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from fastapi import Depends

from app.core.config import settings
from app.core.errors import StorageUnavailable

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True, pool_recycle=3600)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)
Base = declarative_base()

# SQLite only autoincrements INTEGER PRIMARY KEY
BigId = BigInteger().with_variant(Integer, "sqlite")


@asynccontextmanager
async def unit_of_work(factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """
    One operation = one transaction. Commits when the block exits cleanly,
    rolls back on any exception. Connectivity failures surface as
    StorageUnavailable so the caller retries the whole operation.
    """
    try:
        async with factory() as session:
            async with session.begin():
                yield session
    except (OperationalError, InterfaceError) as e:
        raise StorageUnavailable(str(e.orig or e)) from e


def get_sessionmaker() -> async_sessionmaker:
    return AsyncSessionLocal


async def get_session(factory: async_sessionmaker = Depends(get_sessionmaker)) -> AsyncSession:
    async with factory() as session:
        yield session
