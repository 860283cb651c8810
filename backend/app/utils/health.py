import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger("modl.health")


async def check_database_connection(engine: AsyncEngine) -> None:
    """Run a trivial query; SQLAlchemy errors propagate to the caller."""
    async with engine.connect() as connection:
        await connection.execute(text("SELECT 1"))
    logger.debug("Database probe succeeded")
