"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    handle: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=_utc_now)


class Credential(SQLModel, table=True):
    __tablename__ = "credentials"

    id: int | None = Field(default=None, primary_key=True)
    owner_user_id: str = Field(foreign_key="users.id", index=True)
    credential_id: bytes = Field(unique=True)
    public_key: bytes  # COSE_Key, algorithm-tagged
    sign_count: int = Field(default=0, sa_type=BigInteger)  # uint32 in authData
    transports: str = Field(default="[]")  # JSON list
    aaguid: str = ""
    backup_eligible: bool = Field(default=False)
    backed_up: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utc_now)
    last_used_at: datetime | None = None


class Challenge(SQLModel, table=True):
    __tablename__ = "challenges"

    id: int | None = Field(default=None, primary_key=True)
    owner_user_id: str = Field(foreign_key="users.id", index=True)
    value: bytes = Field(unique=True)
    kind: str = Field(index=True)  # registration | authentication
    issued_at: datetime = Field(default_factory=_utc_now)
    expires_at: datetime
    consumed: bool = Field(default=False)
