"""Authentication ceremony verification and clone detection."""

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING, Any

from passkeyrp.exceptions import CloneDetected, MalformedCeremonyData, UserHandleMismatch
from passkeyrp.models.ceremony import VerifiedAssertion
from passkeyrp.types import ClientDataType
from passkeyrp.webauthn.binding import verify_binding
from passkeyrp.webauthn.codec import decode_authentication_response
from passkeyrp.webauthn.cose import decode_public_key, verify_signature

if TYPE_CHECKING:
    from passkeyrp.models.database import Credential


class AuthenticationVerifier:
    """Validates an assertion against a stored credential.

    Pure computation: the caller loads ``stored_credential`` and persists the
    returned counter through ``CredentialStore.update_counter``.
    """

    def __init__(self, require_user_verification: bool = False) -> None:
        self._require_uv = require_user_verification

    def verify(
        self,
        raw_response: dict[str, Any] | str,
        credential_id: bytes,
        expected_challenge: bytes,
        expected_origin: str,
        expected_rp_id: str,
        stored_credential: Credential,
    ) -> VerifiedAssertion:
        response = decode_authentication_response(raw_response)
        if not (
            hmac.compare_digest(response.credential_id, credential_id)
            and hmac.compare_digest(stored_credential.credential_id, credential_id)
        ):
            msg = "Response does not belong to the supplied credential"
            raise MalformedCeremonyData(msg)

        # userHandle is optional in assertions; when present it must name the owner
        if response.user_handle is not None and not hmac.compare_digest(
            response.user_handle, stored_credential.owner_user_id.encode()
        ):
            raise UserHandleMismatch

        auth_data = response.authenticator_data
        verify_binding(
            response.client_data,
            auth_data,
            expected_type=ClientDataType.GET,
            expected_challenge=expected_challenge,
            expected_origin=expected_origin,
            expected_rp_id=expected_rp_id,
            require_user_verification=self._require_uv,
        )

        public_key = decode_public_key(stored_credential.public_key)
        signed = auth_data.raw + hashlib.sha256(response.client_data.raw).digest()
        verify_signature(public_key, response.signature, signed)

        new_counter = auth_data.sign_count
        check_counter(new_counter, stored_credential.sign_count)

        return VerifiedAssertion(
            credential_id=credential_id,
            new_counter=new_counter,
            user_verified=auth_data.user_verified,
            backed_up=auth_data.backed_up,
        )


def check_counter(new_counter: int, stored_counter: int) -> None:
    """Raise ``CloneDetected`` unless the counter advanced.

    Authenticators that do not implement counters report 0 forever; the check
    is skipped only when both values are 0.
    """
    if new_counter == 0 and stored_counter == 0:
        return
    if new_counter <= stored_counter:
        raise CloneDetected
