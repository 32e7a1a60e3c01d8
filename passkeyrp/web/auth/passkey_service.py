"""WebAuthn passkey service: registration and authentication ceremonies."""

from __future__ import annotations

import json
import secrets
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
)
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from passkeyrp.exceptions import (
    CeremonyError,
    CredentialNotFound,
    NoRegisteredCredentials,
    NoSuchUser,
    NoValidChallenge,
    RegistrationClosed,
    SecurityViolation,
)
from passkeyrp.storage.repositories.challenges import CHALLENGE_BYTES
from passkeyrp.storage.repositories.credentials import parse_transports
from passkeyrp.types import ChallengeKind
from passkeyrp.webauthn.authentication import AuthenticationVerifier
from passkeyrp.webauthn.codec import credential_id_of
from passkeyrp.webauthn.cose import SUPPORTED_ALGORITHMS
from passkeyrp.webauthn.registration import RegistrationVerifier

if TYPE_CHECKING:
    from passkeyrp.config.settings import Settings
    from passkeyrp.models.database import Credential
    from passkeyrp.storage.repositories.challenges import DatabaseChallengeStore
    from passkeyrp.storage.repositories.credentials import DatabaseCredentialStore
    from passkeyrp.storage.repositories.users import DatabaseUserRepository
    from passkeyrp.web.auth.session import SessionIssuer

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AuthenticationResult:
    user_id: str
    token: str


class PasskeyService:
    """Orchestrates WebAuthn registration and authentication ceremonies.

    Each ``complete_*`` call is a flat pipeline of awaited steps; the first
    failing step raises and nothing after it runs. The challenge is consumed
    before verification starts and is never restored, whatever the outcome.
    """

    def __init__(
        self,
        settings: Settings,
        user_repo: DatabaseUserRepository,
        challenges: DatabaseChallengeStore,
        credentials: DatabaseCredentialStore,
        sessions: SessionIssuer,
    ) -> None:
        self._settings = settings
        self._users = user_repo
        self._challenges = challenges
        self._credentials = credentials
        self._sessions = sessions
        self._registration = RegistrationVerifier(
            credentials, require_user_verification=settings.require_user_verification
        )
        self._authentication = AuthenticationVerifier(
            require_user_verification=settings.require_user_verification
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def begin_registration(
        self, handle: str, authenticated_user_id: str | None = None
    ) -> dict[str, Any]:
        """Generate PublicKeyCredentialCreationOptions for ``handle``.

        Unknown handles are created when ``auto_create_users`` is on. Adding a
        further passkey to an account that already has one requires a session
        for that account. Unless ``public_account_lookup`` is on, a refused
        handle gets options for a throwaway user id instead of an error, so
        the response does not reveal whether the account exists.
        """
        if self._settings.auto_create_users:
            user = await self._users.get_or_create(handle)
        else:
            user = await self._users.get_by_handle(handle)
            if user is None:
                if self._settings.public_account_lookup:
                    raise NoSuchUser
                return self._decoy_registration(handle)

        existing = await self._credentials.list_by_user(user.id)
        if existing and authenticated_user_id != user.id:
            if self._settings.public_account_lookup:
                raise RegistrationClosed
            logger.warning("registration_refused", user_id=user.id)
            return self._decoy_registration(handle)

        challenge = await self._challenges.issue(user.id, ChallengeKind.REGISTRATION)
        options = self._registration_options(
            user.id, user.handle, challenge.value, [c.credential_id for c in existing]
        )

        logger.info("registration_challenge_issued", user_id=user.id)
        return {"options": options, "user_id": user.id}

    async def complete_registration(
        self, user_id: str, raw_response: dict[str, Any] | str
    ) -> Credential:
        """Verify a registration response and persist the new credential."""
        user = await self._users.get_by_id(user_id)
        if user is None:
            if self._settings.public_account_lookup:
                raise NoSuchUser
            # Throwaway ids never had a challenge
            raise NoValidChallenge

        challenge = await self._challenges.consume_latest_valid(
            user.id, ChallengeKind.REGISTRATION
        )
        try:
            new_credential = await self._registration.verify(
                user.id,
                raw_response,
                expected_challenge=challenge.value,
                expected_origin=self._settings.origin,
                expected_rp_id=self._settings.rp_id,
            )
            credential = await self._credentials.create_unique(
                new_credential.credential_id,
                user.id,
                new_credential.public_key,
                new_credential.sign_count,
                new_credential.transports,
                aaguid=new_credential.aaguid,
                backup_eligible=new_credential.backup_eligible,
                backed_up=new_credential.backed_up,
            )
        except CeremonyError as exc:
            _log_rejection(exc, ChallengeKind.REGISTRATION, user.id)
            raise

        logger.info(
            "passkey_registered",
            user_id=user.id,
            algorithm=new_credential.algorithm.name,
            user_verified=new_credential.user_verified,
        )
        return credential

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def begin_authentication(self, handle: str) -> dict[str, Any]:
        """Generate PublicKeyCredentialRequestOptions scoped to ``handle``'s passkeys."""
        user = await self._users.get_by_handle(handle)
        if user is None:
            if self._settings.public_account_lookup:
                raise NoSuchUser
            raise NoRegisteredCredentials

        credentials = await self._credentials.list_by_user(user.id)
        if not credentials:
            raise NoRegisteredCredentials

        challenge = await self._challenges.issue(user.id, ChallengeKind.AUTHENTICATION)
        options = generate_authentication_options(
            rp_id=self._settings.rp_id,
            challenge=challenge.value,
            timeout=self._settings.ceremony_timeout_ms,
            allow_credentials=[
                PublicKeyCredentialDescriptor(
                    id=c.credential_id,
                    transports=_parse_transports(c.transports),
                )
                for c in credentials
            ],
            user_verification=self._user_verification(),
        )

        logger.info("authentication_challenge_issued", user_id=user.id)
        return {"options": json.loads(options_to_json(options))}

    async def complete_authentication(
        self, handle: str, raw_response: dict[str, Any] | str
    ) -> AuthenticationResult:
        """Verify an assertion, advance the counter and issue a session."""
        user = await self._users.get_by_handle(handle)
        if user is None:
            if self._settings.public_account_lookup:
                raise NoSuchUser
            raise NoValidChallenge

        challenge = await self._challenges.consume_latest_valid(
            user.id, ChallengeKind.AUTHENTICATION
        )
        try:
            credential_id = credential_id_of(raw_response)
            stored = await self._credentials.find_by_id(credential_id)
            if stored is None or stored.owner_user_id != user.id:
                raise CredentialNotFound

            verified = self._authentication.verify(
                raw_response,
                credential_id,
                expected_challenge=challenge.value,
                expected_origin=self._settings.origin,
                expected_rp_id=self._settings.rp_id,
                stored_credential=stored,
            )
            # All-zero counters (no counter support) have nothing to persist
            if verified.new_counter > stored.sign_count:
                await self._credentials.update_counter(credential_id, verified.new_counter)
        except CeremonyError as exc:
            _log_rejection(exc, ChallengeKind.AUTHENTICATION, user.id)
            raise

        token = self._sessions.issue(user.id)
        logger.info(
            "passkey_authenticated",
            user_id=user.id,
            old_counter=stored.sign_count,
            new_counter=verified.new_counter,
        )
        return AuthenticationResult(user_id=user.id, token=token)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _registration_options(
        self, user_id: str, handle: str, challenge: bytes, exclude: list[bytes]
    ) -> dict[str, Any]:
        options = generate_registration_options(
            rp_id=self._settings.rp_id,
            rp_name=self._settings.rp_name,
            user_id=user_id.encode(),
            user_name=handle,
            user_display_name=handle,
            challenge=challenge,
            timeout=self._settings.ceremony_timeout_ms,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=self._user_verification(),
            ),
            exclude_credentials=[PublicKeyCredentialDescriptor(id=c) for c in exclude],
            supported_pub_key_algs=[COSEAlgorithmIdentifier(int(a)) for a in SUPPORTED_ALGORITHMS],
        )
        return json.loads(options_to_json(options))

    def _decoy_registration(self, handle: str) -> dict[str, Any]:
        """Options shaped like a new account's; nothing is persisted."""
        user_id = str(uuid.uuid4())
        options = self._registration_options(
            user_id, handle, secrets.token_bytes(CHALLENGE_BYTES), []
        )
        return {"options": options, "user_id": user_id}

    def _user_verification(self) -> UserVerificationRequirement:
        if self._settings.require_user_verification:
            return UserVerificationRequirement.REQUIRED
        return UserVerificationRequirement.PREFERRED


def _log_rejection(exc: CeremonyError, kind: ChallengeKind, user_id: str) -> None:
    """Security violations go to operators at error level; the rest is a warning."""
    if isinstance(exc, SecurityViolation):
        logger.error("passkey_security_violation", kind=kind, user_id=user_id, error=exc.code)
    else:
        logger.warning("passkey_ceremony_rejected", kind=kind, user_id=user_id, error=exc.code)


def _parse_transports(transports_json: str) -> list[AuthenticatorTransport]:
    """Parse stored transport strings into AuthenticatorTransport enums."""
    result: list[AuthenticatorTransport] = []
    for t in parse_transports(transports_json):
        try:
            result.append(AuthenticatorTransport(t))
        except ValueError:
            continue
    return result
