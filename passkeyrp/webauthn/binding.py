"""Checks shared by both ceremonies: type, challenge, origin, RP ID, flags."""

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING

from passkeyrp.exceptions import (
    AuthenticatorFlagsRejected,
    CeremonyTypeMismatch,
    ChallengeMismatch,
    OriginMismatch,
    RpIdMismatch,
)

if TYPE_CHECKING:
    from passkeyrp.models.ceremony import AuthenticatorData, ClientData
    from passkeyrp.types import ClientDataType


def rp_id_hash(rp_id: str) -> bytes:
    return hashlib.sha256(rp_id.encode("utf-8")).digest()


def verify_binding(
    client_data: ClientData,
    authenticator_data: AuthenticatorData,
    *,
    expected_type: ClientDataType,
    expected_challenge: bytes,
    expected_origin: str,
    expected_rp_id: str,
    require_user_verification: bool,
) -> None:
    """Run the checks in order; the first failure raises."""
    if client_data.type != expected_type:
        raise CeremonyTypeMismatch(f"Expected {expected_type}, got {client_data.type!r}")

    if not hmac.compare_digest(client_data.challenge, expected_challenge):
        raise ChallengeMismatch

    # Exact string match, no normalization
    if client_data.origin != expected_origin:
        raise OriginMismatch

    if not hmac.compare_digest(authenticator_data.rp_id_hash, rp_id_hash(expected_rp_id)):
        raise RpIdMismatch

    if not authenticator_data.user_present:
        msg = "User presence flag not set"
        raise AuthenticatorFlagsRejected(msg)
    if require_user_verification and not authenticator_data.user_verified:
        msg = "User verification required but flag not set"
        raise AuthenticatorFlagsRejected(msg)
