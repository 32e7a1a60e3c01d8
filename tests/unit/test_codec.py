"""Unit tests for the ceremony codec."""

from __future__ import annotations

import hashlib
import json
import struct

import cbor2
import pytest
from software_authenticator import AT, ED, UP, UV, SoftwareAuthenticator
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

from passkeyrp.exceptions import MalformedCeremonyData
from passkeyrp.types import AuthenticatorFlag, CoseAlgorithm
from passkeyrp.webauthn.codec import (
    credential_id_of,
    decode_attestation_object,
    decode_authentication_response,
    decode_client_data,
    decode_registration_response,
    parse_authenticator_data,
)

CHALLENGE = b"c" * 32


def _rewrite_auth_data(registration: dict, auth_data: bytes) -> dict:
    """Swap the authData inside a registration response's attestation object."""
    att = cbor2.loads(base64url_to_bytes(registration["response"]["attestationObject"]))
    att["authData"] = auth_data
    registration["response"]["attestationObject"] = bytes_to_base64url(cbor2.dumps(att))
    return registration


def _auth_data_of(registration: dict) -> bytes:
    att = cbor2.loads(base64url_to_bytes(registration["response"]["attestationObject"]))
    return att["authData"]


@pytest.mark.unit
class TestClientData:
    def test_decodes_fields(self) -> None:
        raw = json.dumps(
            {
                "type": "webauthn.get",
                "challenge": bytes_to_base64url(CHALLENGE),
                "origin": "http://localhost:3000",
            }
        ).encode()
        client_data = decode_client_data(raw)
        assert client_data.type == "webauthn.get"
        assert client_data.challenge == CHALLENGE
        assert client_data.origin == "http://localhost:3000"
        assert client_data.cross_origin is False
        assert client_data.raw == raw

    def test_invalid_json(self) -> None:
        with pytest.raises(MalformedCeremonyData):
            decode_client_data(b"{not json")

    def test_not_an_object(self) -> None:
        with pytest.raises(MalformedCeremonyData):
            decode_client_data(b"[1, 2]")

    @pytest.mark.parametrize("missing", ["type", "challenge", "origin"])
    def test_missing_field(self, missing: str) -> None:
        data = {"type": "webauthn.get", "challenge": "YWJj", "origin": "http://x"}
        del data[missing]
        with pytest.raises(MalformedCeremonyData, match=missing):
            decode_client_data(json.dumps(data).encode())


@pytest.mark.unit
class TestAuthenticatorData:
    def test_minimal_assertion_data(self) -> None:
        rp_hash = hashlib.sha256(b"localhost").digest()
        raw = rp_hash + struct.pack(">BI", UP | UV, 42)
        auth_data = parse_authenticator_data(raw)
        assert auth_data.rp_id_hash == rp_hash
        assert auth_data.sign_count == 42
        assert auth_data.user_present
        assert auth_data.user_verified
        assert not auth_data.backed_up
        assert auth_data.attested_credential is None
        assert auth_data.extensions is None

    def test_truncated_header(self) -> None:
        with pytest.raises(MalformedCeremonyData, match="too short"):
            parse_authenticator_data(b"\x00" * 36)

    def test_trailing_bytes_rejected(self) -> None:
        raw = b"\x00" * 32 + struct.pack(">BI", UP, 1) + b"\x01"
        with pytest.raises(MalformedCeremonyData, match="trailing"):
            parse_authenticator_data(raw)

    def test_extensions_parsed(self) -> None:
        raw = b"\x00" * 32 + struct.pack(">BI", UP | ED, 1) + cbor2.dumps({"credProtect": 1})
        auth_data = parse_authenticator_data(raw)
        assert auth_data.extensions == {"credProtect": 1}
        assert auth_data.flags & AuthenticatorFlag.EXTENSION_DATA

    def test_attested_credential_parsed(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        auth_data = parse_authenticator_data(_auth_data_of(registration))
        attested = auth_data.attested_credential
        assert attested is not None
        assert attested.credential_id == base64url_to_bytes(registration["rawId"])
        assert attested.public_key.algorithm is CoseAlgorithm.ES256

    def test_attested_credential_truncated(self, authenticator: SoftwareAuthenticator) -> None:
        raw = _auth_data_of(authenticator.register(CHALLENGE))
        with pytest.raises(MalformedCeremonyData):
            parse_authenticator_data(raw[:60])

    def test_credential_id_length_overflows_buffer(self) -> None:
        raw = b"\x00" * 32 + struct.pack(">BI", UP | AT, 0) + b"\x00" * 16 + struct.pack(">H", 500)
        with pytest.raises(MalformedCeremonyData, match="Credential ID length"):
            parse_authenticator_data(raw + b"\x01" * 10)


@pytest.mark.unit
class TestRegistrationResponse:
    def test_decodes_registration(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE, transports=["usb", "nfc"])
        decoded = decode_registration_response(registration)
        assert decoded.attestation_format == "none"
        assert decoded.client_data.type == "webauthn.create"
        assert decoded.client_data.challenge == CHALLENGE
        assert decoded.transports == ["usb", "nfc"]
        assert decoded.authenticator_data.sign_count == 0

    def test_accepts_json_string(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        decoded = decode_registration_response(json.dumps(registration))
        assert decoded.credential.credential_id == base64url_to_bytes(registration["rawId"])

    def test_missing_attested_flag(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        rp_hash = hashlib.sha256(b"localhost").digest()
        _rewrite_auth_data(registration, rp_hash + struct.pack(">BI", UP, 0))
        with pytest.raises(MalformedCeremonyData, match="attested credential"):
            decode_registration_response(registration)

    def test_unknown_key_algorithm(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        auth_data = _auth_data_of(registration)
        cose_start = 37 + 16 + 2 + 32
        cose = cbor2.loads(auth_data[cose_start:])
        cose[3] = -65535  # RS1
        _rewrite_auth_data(registration, auth_data[:cose_start] + cbor2.dumps(cose))
        with pytest.raises(MalformedCeremonyData, match="Unsupported key algorithm"):
            decode_registration_response(registration)

    def test_raw_id_mismatch(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        registration["rawId"] = bytes_to_base64url(b"someone-else")
        with pytest.raises(MalformedCeremonyData, match="rawId"):
            decode_registration_response(registration)

    def test_attestation_object_not_cbor(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        registration["response"]["attestationObject"] = bytes_to_base64url(b"\xff\xff")
        with pytest.raises(MalformedCeremonyData):
            decode_registration_response(registration)

    def test_attestation_object_missing_auth_data(self) -> None:
        with pytest.raises(MalformedCeremonyData, match="authData"):
            decode_attestation_object(cbor2.dumps({"fmt": "none", "attStmt": {}}))

    def test_missing_response(self) -> None:
        with pytest.raises(MalformedCeremonyData, match="response"):
            decode_registration_response({"id": "abc", "type": "public-key"})

    def test_wrong_credential_type(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        registration["type"] = "password"
        with pytest.raises(MalformedCeremonyData, match="public-key"):
            decode_registration_response(registration)


@pytest.mark.unit
class TestAuthenticationResponse:
    def test_decodes_assertion(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        credential_id = base64url_to_bytes(registration["rawId"])
        assertion = authenticator.assertion(CHALLENGE, credential_id)

        decoded = decode_authentication_response(assertion)
        assert decoded.credential_id == credential_id
        assert decoded.client_data.type == "webauthn.get"
        assert decoded.authenticator_data.sign_count == 1
        assert decoded.signature
        assert decoded.user_handle is None

    def test_missing_signature(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        assertion = authenticator.assertion(CHALLENGE, base64url_to_bytes(registration["rawId"]))
        del assertion["response"]["signature"]
        with pytest.raises(MalformedCeremonyData, match="signature"):
            decode_authentication_response(assertion)

    def test_bad_base64(self, authenticator: SoftwareAuthenticator) -> None:
        registration = authenticator.register(CHALLENGE)
        assertion = authenticator.assertion(CHALLENGE, base64url_to_bytes(registration["rawId"]))
        assertion["response"]["authenticatorData"] = "a"
        with pytest.raises(MalformedCeremonyData):
            decode_authentication_response(assertion)

    def test_credential_id_of(self) -> None:
        assert credential_id_of({"rawId": bytes_to_base64url(b"abc")}) == b"abc"
        assert credential_id_of({"id": bytes_to_base64url(b"xyz")}) == b"xyz"
        with pytest.raises(MalformedCeremonyData):
            credential_id_of({"type": "public-key"})
