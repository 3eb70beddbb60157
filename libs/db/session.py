from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal

logger = get_logger(__name__)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields one ledger session per request.

    Ledger operations commit their own units of work. Anything still pending
    when the handler raises (a half-written commission, an order upsert) is
    rolled back before the connection goes back to the pool.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            if session.in_transaction():
                logger.warning("Rolling back uncommitted ledger changes")
                await session.rollback()
            raise
