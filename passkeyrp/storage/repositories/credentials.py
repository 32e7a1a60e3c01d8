"""SQL-backed WebAuthn credential store."""

from __future__ import annotations

import json
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from passkeyrp.exceptions import (
    CounterRegression,
    CredentialNotFound,
    DuplicateCredential,
    StorageError,
)
from passkeyrp.models.database import Credential, _utc_now

logger = structlog.get_logger(__name__)


class DatabaseCredentialStore:
    """Per-user public-key credentials and their signature counters.

    Uniqueness of ``credential_id`` is enforced by the table constraint and
    counter monotonicity by a conditional UPDATE, so neither depends on a
    check-then-write in this process.
    """

    def __init__(self, engine: Any) -> None:
        self._engine = engine

    async def create_unique(
        self,
        credential_id: bytes,
        owner_user_id: str,
        public_key: bytes,
        counter: int = 0,
        transports: list[str] | None = None,
        *,
        aaguid: str = "",
        backup_eligible: bool = False,
        backed_up: bool = False,
    ) -> Credential:
        credential = Credential(
            owner_user_id=owner_user_id,
            credential_id=credential_id,
            public_key=public_key,
            sign_count=counter,
            transports=json.dumps(transports or []),
            aaguid=aaguid,
            backup_eligible=backup_eligible,
            backed_up=backed_up,
        )
        try:
            async with AsyncSession(self._engine) as session:
                session.add(credential)
                await session.commit()
                await session.refresh(credential)
        except IntegrityError as exc:
            if await self.find_by_id(credential_id) is not None:
                logger.warning("credential_duplicate_rejected", owner_user_id=owner_user_id)
                raise DuplicateCredential from exc
            raise StorageError from exc
        except SQLAlchemyError as exc:
            raise StorageError from exc

        logger.info("credential_created", owner_user_id=owner_user_id)
        return credential

    async def find_by_id(self, credential_id: bytes) -> Credential | None:
        try:
            async with AsyncSession(self._engine) as session:
                stmt = select(Credential).where(col(Credential.credential_id) == credential_id)
                result = await session.execute(stmt)
                return result.scalars().first()
        except SQLAlchemyError as exc:
            raise StorageError from exc

    async def list_by_user(self, user_id: str) -> list[Credential]:
        try:
            async with AsyncSession(self._engine) as session:
                stmt = (
                    select(Credential)
                    .where(col(Credential.owner_user_id) == user_id)
                    .order_by(col(Credential.id))
                )
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StorageError from exc

    async def update_counter(self, credential_id: bytes, new_counter: int) -> None:
        """Store ``new_counter`` only if it is greater than the current value."""
        try:
            async with AsyncSession(self._engine) as session:
                stmt = (
                    update(Credential)
                    .where(
                        col(Credential.credential_id) == credential_id,
                        col(Credential.sign_count) < new_counter,
                    )
                    .values(sign_count=new_counter, last_used_at=_utc_now())
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError from exc

        if result.rowcount == 1:
            return
        if await self.find_by_id(credential_id) is None:
            raise CredentialNotFound
        logger.warning("credential_counter_regression_rejected", new_counter=new_counter)
        raise CounterRegression


def parse_transports(transports_json: str) -> list[str]:
    """Decode the stored JSON transport list, dropping anything that is not a string."""
    if not transports_json or transports_json == "[]":
        return []
    try:
        raw = json.loads(transports_json)
    except ValueError:
        return []
    return [t for t in raw if isinstance(t, str)] if isinstance(raw, list) else []
