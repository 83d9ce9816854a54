"""Per-operation transaction scope.

Every lifecycle operation, ledger mutation and background-job item runs in its
own unit of work: the session commits when the block exits cleanly and rolls
back on any exception, so a status change and its balance debit land together
or not at all.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Open a session, commit on success, roll back and re-raise on failure."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            logger.debug("Unit of work rolled back")
            raise


def insert_ignore(db: AsyncSession, model, **values):
    """Build ``INSERT ... ON CONFLICT DO NOTHING`` for the session's dialect.

    Used for rows keyed by a natural unique constraint (ledger rows) so two
    writers creating the same row cannot both insert it.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {dialect!r}")
    return stmt.on_conflict_do_nothing()
