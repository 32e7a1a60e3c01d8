"""Binary-to-structured decoding of authenticator responses.

The input is the JSON form of a browser ``PublicKeyCredential`` with
base64url-encoded binary fields::

    {
        "id": "...", "rawId": "...", "type": "public-key",
        "response": {
            "clientDataJSON": "...",
            "attestationObject": "...",      # registration
            "transports": ["internal"],      # registration, optional
            "authenticatorData": "...",      # authentication
            "signature": "...",              # authentication
            "userHandle": "..."              # authentication, optional
        }
    }

Authenticator data layout::

    rpIdHash (32) | flags (1) | signCount (4, big endian)
    | attested credential data (if AT): aaguid (16) | idLen (2) | id | COSE_Key
    | extensions (if ED): CBOR map

Nothing here decides trust; every structural problem is a
``MalformedCeremonyData``.
"""

from __future__ import annotations

import binascii
import io
import json
from typing import Any

import cbor2
from webauthn.helpers import base64url_to_bytes

from passkeyrp.exceptions import MalformedCeremonyData
from passkeyrp.models.ceremony import (
    AttestedCredentialData,
    AuthenticationResponse,
    AuthenticatorData,
    ClientData,
    RegistrationResponse,
)
from passkeyrp.types import AuthenticatorFlag
from passkeyrp.webauthn.cose import public_key_from_map

_RP_ID_HASH_LEN = 32
_HEADER_LEN = 37
_AAGUID_LEN = 16
_MAX_CREDENTIAL_ID_LEN = 1023

_CBOR_ERRORS = (cbor2.CBORDecodeError, ValueError, TypeError, EOFError)


def decode_registration_response(raw: dict[str, Any] | str) -> RegistrationResponse:
    """Decode a ``navigator.credentials.create()`` result."""
    credential = _load_credential(raw)
    response = _require_dict(credential, "response")

    client_data = decode_client_data(_b64_field(response, "clientDataJSON"))
    fmt, _att_stmt, auth_data_bytes = decode_attestation_object(
        _b64_field(response, "attestationObject")
    )
    authenticator_data = parse_authenticator_data(auth_data_bytes)
    attested = authenticator_data.attested_credential
    if attested is None:
        msg = "Registration authenticator data lacks attested credential data"
        raise MalformedCeremonyData(msg)

    raw_id = credential.get("rawId") or credential.get("id")
    if raw_id is not None and _b64decode(raw_id, "rawId") != attested.credential_id:
        msg = "rawId does not match the attested credential ID"
        raise MalformedCeremonyData(msg)

    transports = response.get("transports") or []
    if not isinstance(transports, list):
        msg = "transports must be a list"
        raise MalformedCeremonyData(msg)

    return RegistrationResponse(
        client_data=client_data,
        attestation_format=fmt,
        authenticator_data=authenticator_data,
        credential=attested,
        transports=[t for t in transports if isinstance(t, str)],
    )


def decode_authentication_response(raw: dict[str, Any] | str) -> AuthenticationResponse:
    """Decode a ``navigator.credentials.get()`` result."""
    credential = _load_credential(raw)
    response = _require_dict(credential, "response")

    user_handle_b64 = response.get("userHandle")
    user_handle = _b64decode(user_handle_b64, "userHandle") if user_handle_b64 else None

    authenticator_data = parse_authenticator_data(_b64_field(response, "authenticatorData"))
    if authenticator_data.attested_credential is not None:
        msg = "Assertion authenticator data must not carry attested credential data"
        raise MalformedCeremonyData(msg)

    return AuthenticationResponse(
        credential_id=credential_id_of(credential),
        client_data=decode_client_data(_b64_field(response, "clientDataJSON")),
        authenticator_data=authenticator_data,
        signature=_b64_field(response, "signature"),
        user_handle=user_handle,
    )


def credential_id_of(raw: dict[str, Any] | str) -> bytes:
    """Return the credential ID (``rawId``, falling back to ``id``) of a response."""
    credential = _load_credential(raw)
    raw_id = credential.get("rawId") or credential.get("id")
    if not raw_id:
        msg = "Response carries no credential ID"
        raise MalformedCeremonyData(msg)
    return _b64decode(raw_id, "rawId")


def decode_client_data(raw: bytes) -> ClientData:
    """Parse clientDataJSON. The raw bytes are kept for hashing."""
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        msg = "clientDataJSON is not valid JSON"
        raise MalformedCeremonyData(msg) from exc
    if not isinstance(parsed, dict):
        msg = "clientDataJSON is not an object"
        raise MalformedCeremonyData(msg)

    for key in ("type", "challenge", "origin"):
        if not isinstance(parsed.get(key), str):
            msg = f"clientDataJSON.{key} is missing"
            raise MalformedCeremonyData(msg)

    return ClientData(
        type=parsed["type"],
        challenge=_b64decode(parsed["challenge"], "clientDataJSON.challenge"),
        origin=parsed["origin"],
        cross_origin=parsed.get("crossOrigin") is True,
        raw=raw,
    )


def decode_attestation_object(raw: bytes) -> tuple[str, dict[Any, Any], bytes]:
    """Split a CBOR attestation object into (fmt, attStmt, authData)."""
    try:
        obj = cbor2.loads(raw)
    except _CBOR_ERRORS as exc:
        msg = "attestationObject is not valid CBOR"
        raise MalformedCeremonyData(msg) from exc
    if not isinstance(obj, dict):
        msg = "attestationObject is not a CBOR map"
        raise MalformedCeremonyData(msg)

    fmt, att_stmt, auth_data = obj.get("fmt"), obj.get("attStmt"), obj.get("authData")
    if not isinstance(fmt, str) or not isinstance(att_stmt, dict) or not isinstance(auth_data, bytes):
        msg = "attestationObject requires fmt, attStmt and authData"
        raise MalformedCeremonyData(msg)
    return fmt, att_stmt, auth_data


def parse_authenticator_data(raw: bytes) -> AuthenticatorData:
    """Parse the authenticator data byte string."""
    if len(raw) < _HEADER_LEN:
        msg = f"Authenticator data too short ({len(raw)} bytes)"
        raise MalformedCeremonyData(msg)

    rp_id_hash = raw[:_RP_ID_HASH_LEN]
    flags = AuthenticatorFlag(raw[_RP_ID_HASH_LEN])
    sign_count = int.from_bytes(raw[33:_HEADER_LEN], "big")
    offset = _HEADER_LEN

    attested: AttestedCredentialData | None = None
    if flags & AuthenticatorFlag.ATTESTED_CREDENTIAL_DATA:
        attested, offset = _parse_attested_credential(raw, offset)

    extensions: dict[Any, Any] | None = None
    if flags & AuthenticatorFlag.EXTENSION_DATA:
        decoded, offset = _decode_cbor_item(raw, offset, "extensions")
        if not isinstance(decoded, dict):
            msg = "Authenticator extensions are not a CBOR map"
            raise MalformedCeremonyData(msg)
        extensions = decoded

    if offset != len(raw):
        msg = f"Authenticator data has {len(raw) - offset} trailing bytes"
        raise MalformedCeremonyData(msg)

    return AuthenticatorData(
        rp_id_hash=rp_id_hash,
        flags=flags,
        sign_count=sign_count,
        attested_credential=attested,
        extensions=extensions,
        raw=raw,
    )


def _parse_attested_credential(raw: bytes, offset: int) -> tuple[AttestedCredentialData, int]:
    if len(raw) < offset + _AAGUID_LEN + 2:
        msg = "Attested credential data is truncated"
        raise MalformedCeremonyData(msg)

    aaguid = raw[offset : offset + _AAGUID_LEN]
    offset += _AAGUID_LEN
    id_len = int.from_bytes(raw[offset : offset + 2], "big")
    offset += 2
    if id_len == 0 or id_len > _MAX_CREDENTIAL_ID_LEN or len(raw) < offset + id_len:
        msg = f"Credential ID length {id_len} is invalid or truncated"
        raise MalformedCeremonyData(msg)
    credential_id = raw[offset : offset + id_len]
    offset += id_len

    start = offset
    cose_map, offset = _decode_cbor_item(raw, offset, "credential public key")
    public_key = public_key_from_map(cose_map, raw[start:offset])

    return AttestedCredentialData(
        aaguid=aaguid, credential_id=credential_id, public_key=public_key
    ), offset


def _decode_cbor_item(raw: bytes, offset: int, what: str) -> tuple[Any, int]:
    """Decode exactly one CBOR item at ``offset``; return it and the new offset."""
    stream = io.BytesIO(raw[offset:])
    try:
        item = cbor2.CBORDecoder(stream).decode()
    except _CBOR_ERRORS as exc:
        msg = f"Authenticator data {what} is not valid CBOR"
        raise MalformedCeremonyData(msg) from exc
    return item, offset + stream.tell()


def _load_credential(raw: dict[str, Any] | str) -> dict[str, Any]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            msg = "Credential is not valid JSON"
            raise MalformedCeremonyData(msg) from exc
    if not isinstance(raw, dict):
        msg = "Credential is not an object"
        raise MalformedCeremonyData(msg)
    if raw.get("type", "public-key") != "public-key":
        msg = "Credential type must be public-key"
        raise MalformedCeremonyData(msg)
    return raw


def _require_dict(container: dict[str, Any], key: str) -> dict[str, Any]:
    value = container.get(key)
    if not isinstance(value, dict):
        msg = f"{key} is missing"
        raise MalformedCeremonyData(msg)
    return value


def _b64_field(container: dict[str, Any], key: str) -> bytes:
    value = container.get(key)
    if not value:
        msg = f"response.{key} is missing"
        raise MalformedCeremonyData(msg)
    return _b64decode(value, key)


def _b64decode(value: Any, what: str) -> bytes:
    if not isinstance(value, str):
        msg = f"{what} must be a base64url string"
        raise MalformedCeremonyData(msg)
    try:
        return base64url_to_bytes(value)
    except (binascii.Error, ValueError) as exc:
        msg = f"{what} is not valid base64url"
        raise MalformedCeremonyData(msg) from exc
