"""SQL-backed user repository."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from passkeyrp.exceptions import StorageError
from passkeyrp.models.database import User

logger = structlog.get_logger(__name__)


class DatabaseUserRepository:
    """SQL-backed user store. Handles are unique."""

    def __init__(self, engine: Any) -> None:
        self._engine = engine

    async def create(self, handle: str) -> User:
        from sqlmodel.ext.asyncio.session import AsyncSession

        try:
            async with AsyncSession(self._engine) as session:
                user = User(handle=handle)
                session.add(user)
                await session.commit()
                await session.refresh(user)
        except SQLAlchemyError as exc:
            raise StorageError from exc

        logger.info("user_created", user_id=user.id)
        return user

    async def get_or_create(self, handle: str) -> User:
        """Return the user for ``handle``, creating it on first use.

        Two concurrent first calls race on the unique handle; the loser
        re-reads the winner's row.
        """
        user = await self.get_by_handle(handle)
        if user is not None:
            return user
        try:
            return await self.create(handle)
        except StorageError as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
        user = await self.get_by_handle(handle)
        if user is None:
            msg = "User vanished after concurrent create"
            raise StorageError(msg)
        return user

    async def get_by_id(self, user_id: str) -> User | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        try:
            async with AsyncSession(self._engine) as session:
                stmt = select(User).where(col(User.id) == user_id)
                result = await session.execute(stmt)
                return result.scalars().first()
        except SQLAlchemyError as exc:
            raise StorageError from exc

    async def get_by_handle(self, handle: str) -> User | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        try:
            async with AsyncSession(self._engine) as session:
                stmt = select(User).where(col(User.handle) == handle)
                result = await session.execute(stmt)
                return result.scalars().first()
        except SQLAlchemyError as exc:
            raise StorageError from exc
