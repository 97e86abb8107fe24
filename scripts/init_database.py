#!/usr/bin/env python3
"""
Create custody tables without alembic.

For local development and throwaway databases; production schemas are
managed by `alembic upgrade head`.
"""

import asyncio
import sys

from loguru import logger
from sqlalchemy.ext.asyncio import create_async_engine

from custody.config.settings import settings
from custody.models import Base

logger.remove()
logger.add(sys.stderr, level="INFO")


async def init_database(database_url: str) -> None:
    """Create every custody table that does not exist yet."""
    engine = create_async_engine(database_url, echo=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, checkfirst=True)
    finally:
        await engine.dispose()

    tables = ", ".join(sorted(Base.metadata.tables))
    logger.success(f"Custody tables ready: {tables}")


if __name__ == "__main__":
    asyncio.run(init_database(settings.database_url))
