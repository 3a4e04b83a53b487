"""FastAPI dependencies."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from nomina_engine.database import session_scope


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped unit of work; commits only if the handler succeeds."""
    async with session_scope() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]
