"""Decoded ceremony structures passed between the codec and the verifiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from passkeyrp.types import AuthenticatorFlag, CoseAlgorithm

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes


@dataclass(frozen=True, slots=True)
class ClientData:
    type: str
    challenge: bytes
    origin: str
    cross_origin: bool
    raw: bytes  # exact clientDataJSON bytes, hashed into the signed payload


@dataclass(frozen=True, slots=True)
class CosePublicKey:
    algorithm: CoseAlgorithm
    key: PublicKeyTypes
    encoded: bytes  # COSE_Key CBOR bytes as received


@dataclass(frozen=True, slots=True)
class AttestedCredentialData:
    aaguid: bytes
    credential_id: bytes
    public_key: CosePublicKey


@dataclass(frozen=True, slots=True)
class AuthenticatorData:
    rp_id_hash: bytes
    flags: AuthenticatorFlag
    sign_count: int
    attested_credential: AttestedCredentialData | None
    extensions: dict[Any, Any] | None
    raw: bytes

    @property
    def user_present(self) -> bool:
        return bool(self.flags & AuthenticatorFlag.USER_PRESENT)

    @property
    def user_verified(self) -> bool:
        return bool(self.flags & AuthenticatorFlag.USER_VERIFIED)

    @property
    def backup_eligible(self) -> bool:
        return bool(self.flags & AuthenticatorFlag.BACKUP_ELIGIBLE)

    @property
    def backed_up(self) -> bool:
        return bool(self.flags & AuthenticatorFlag.BACKED_UP)


@dataclass(frozen=True, slots=True)
class RegistrationResponse:
    """A decoded ``navigator.credentials.create()`` result."""

    client_data: ClientData
    attestation_format: str
    authenticator_data: AuthenticatorData
    credential: AttestedCredentialData
    transports: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AuthenticationResponse:
    """A decoded ``navigator.credentials.get()`` result."""

    credential_id: bytes
    client_data: ClientData
    authenticator_data: AuthenticatorData
    signature: bytes
    user_handle: bytes | None


@dataclass(frozen=True, slots=True)
class NewCredential:
    """A verified credential ready for ``CredentialStore.create_unique``."""

    owner_user_id: str
    credential_id: bytes
    public_key: bytes
    algorithm: CoseAlgorithm
    sign_count: int
    transports: list[str]
    aaguid: str
    backup_eligible: bool
    backed_up: bool
    user_verified: bool


@dataclass(frozen=True, slots=True)
class VerifiedAssertion:
    credential_id: bytes
    new_counter: int
    user_verified: bool
    backed_up: bool
