"""Short-lived, single-use challenge storage for WebAuthn ceremonies."""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import delete, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from passkeyrp.exceptions import NoValidChallenge, StorageError
from passkeyrp.models.database import Challenge, _utc_now
from passkeyrp.types import ChallengeKind

logger = structlog.get_logger(__name__)

CHALLENGE_BYTES = 32
_MAX_CONSUME_ATTEMPTS = 5


class DatabaseChallengeStore:
    """Stores WebAuthn challenges with TTL expiry.

    Challenges are one-time-use: ``consume_latest_valid`` flips ``consumed``
    with a conditional UPDATE, so two concurrent consumers (in this process or
    another instance) can never both win the same row. Expiry is evaluated
    against the clock at consumption; ``purge_expired`` is housekeeping only.
    """

    def __init__(self, engine: Any, ttl_seconds: int = 300) -> None:
        self._engine = engine
        self._ttl = timedelta(seconds=ttl_seconds)

    async def issue(self, user_id: str, kind: ChallengeKind) -> Challenge:
        """Generate, persist and return a fresh challenge."""
        now = _utc_now()
        challenge = Challenge(
            owner_user_id=user_id,
            value=secrets.token_bytes(CHALLENGE_BYTES),
            kind=kind,
            issued_at=now,
            expires_at=now + self._ttl,
        )
        try:
            async with AsyncSession(self._engine) as session:
                session.add(challenge)
                await session.commit()
                await session.refresh(challenge)
        except SQLAlchemyError as exc:
            logger.exception("challenge_store_failed", user_id=user_id, kind=kind)
            raise StorageError from exc

        logger.debug("challenge_issued", user_id=user_id, kind=kind)
        return challenge

    async def consume_latest_valid(self, user_id: str, kind: ChallengeKind) -> Challenge:
        """Atomically take the newest live challenge for (user, kind).

        Older outstanding challenges of the same kind are superseded and
        consumed in the same transaction.
        """
        try:
            for _ in range(_MAX_CONSUME_ATTEMPTS):
                consumed = await self._try_consume(user_id, kind)
                if consumed is not None:
                    return consumed
        except SQLAlchemyError as exc:
            raise StorageError from exc
        raise NoValidChallenge

    async def _try_consume(self, user_id: str, kind: ChallengeKind) -> Challenge | None:
        """One select-then-CAS round.

        Raises ``NoValidChallenge`` when nothing is left; returns None when
        another consumer won the race for the selected row.
        """
        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            candidate = await self._select_latest(session, user_id, kind)
            if candidate is None:
                raise NoValidChallenge

            claimed = await session.execute(
                update(Challenge)
                .where(col(Challenge.id) == candidate.id, col(Challenge.consumed).is_(False))
                .values(consumed=True)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                await session.rollback()
                logger.info("challenge_consume_race_lost", user_id=user_id, kind=kind)
                return None

            # Only challenges issued before the candidate; later ones belong to
            # a newer options call.
            await session.execute(
                update(Challenge)
                .where(
                    col(Challenge.owner_user_id) == user_id,
                    col(Challenge.kind) == kind,
                    col(Challenge.consumed).is_(False),
                    col(Challenge.id) < candidate.id,
                )
                .values(consumed=True)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        candidate.consumed = True
        return candidate

    async def _select_latest(
        self, session: AsyncSession, user_id: str, kind: ChallengeKind
    ) -> Challenge | None:
        """Newest live, unconsumed challenge for (user, kind), by issue order."""
        stmt = (
            select(Challenge)
            .where(
                col(Challenge.owner_user_id) == user_id,
                col(Challenge.kind) == kind,
                col(Challenge.consumed).is_(False),
                col(Challenge.expires_at) > _utc_now(),
            )
            .order_by(col(Challenge.id).desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def purge_expired(self) -> int:
        """Delete expired and consumed challenges. Returns the number removed."""
        try:
            async with AsyncSession(self._engine) as session:
                stmt = (
                    delete(Challenge)
                    .where(
                        or_(
                            col(Challenge.consumed).is_(True),
                            col(Challenge.expires_at) <= _utc_now(),
                        )
                    )
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError from exc

        removed = result.rowcount or 0
        if removed:
            logger.info("challenges_purged", count=removed)
        return removed
