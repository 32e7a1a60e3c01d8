"""Registration ceremony verification (attestation conveyance ``none``)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from passkeyrp.exceptions import DuplicateCredential
from passkeyrp.models.ceremony import NewCredential
from passkeyrp.types import ClientDataType
from passkeyrp.webauthn.binding import verify_binding
from passkeyrp.webauthn.codec import decode_registration_response

if TYPE_CHECKING:
    from passkeyrp.models.ceremony import RegistrationResponse
    from passkeyrp.storage.repositories.credentials import DatabaseCredentialStore


class RegistrationVerifier:
    """Validates a registration response and extracts the new credential.

    The attestation statement is not evaluated: the public key is trusted as
    presented. The only I/O is the duplicate-ID lookup against the injected
    credential store; persisting the result is left to the caller.
    """

    def __init__(
        self,
        credential_store: DatabaseCredentialStore,
        require_user_verification: bool = False,
    ) -> None:
        self._credentials = credential_store
        self._require_uv = require_user_verification

    async def verify(
        self,
        user_id: str,
        raw_response: dict[str, Any] | str,
        expected_challenge: bytes,
        expected_origin: str,
        expected_rp_id: str,
    ) -> NewCredential:
        response = decode_registration_response(raw_response)
        new_credential = self.check(
            user_id, response, expected_challenge, expected_origin, expected_rp_id
        )

        if await self._credentials.find_by_id(new_credential.credential_id) is not None:
            raise DuplicateCredential
        return new_credential

    def check(
        self,
        user_id: str,
        response: RegistrationResponse,
        expected_challenge: bytes,
        expected_origin: str,
        expected_rp_id: str,
    ) -> NewCredential:
        """Pure part of the verification: every check except the store lookup."""
        auth_data = response.authenticator_data
        verify_binding(
            response.client_data,
            auth_data,
            expected_type=ClientDataType.CREATE,
            expected_challenge=expected_challenge,
            expected_origin=expected_origin,
            expected_rp_id=expected_rp_id,
            require_user_verification=self._require_uv,
        )

        attested = response.credential
        return NewCredential(
            owner_user_id=user_id,
            credential_id=attested.credential_id,
            public_key=attested.public_key.encoded,
            algorithm=attested.public_key.algorithm,
            sign_count=auth_data.sign_count,
            transports=response.transports,
            aaguid=_format_aaguid(attested.aaguid),
            backup_eligible=auth_data.backup_eligible,
            backed_up=auth_data.backed_up,
            user_verified=auth_data.user_verified,
        )


def _format_aaguid(aaguid: bytes) -> str:
    h = aaguid.hex()
    return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:]}"
