from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

import logging

from . import config

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL

# Use NullPool to avoid connection-pool objects being bound to a specific
# event loop (which can cause 'bound to a different event loop' errors
# when tests run each case on a fresh loop).
engine = create_async_engine(DATABASE_URL, echo=False, future=True, poolclass=NullPool)

async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    # import models so their tables are registered on SQLModel.metadata
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info('database initialized (%s)', DATABASE_URL)


async def drop_db():
    """Drop every table. Used by the test suite to start from a clean store."""
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
