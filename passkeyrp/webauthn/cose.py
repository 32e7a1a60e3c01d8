"""COSE_Key decoding and signature verification.

Supported algorithms:

    ES256  (-7)    ECDSA P-256 / SHA-256
    ES512  (-36)   ECDSA P-521 / SHA-512
    EdDSA  (-8)    Ed25519
    PS256  (-37)   RSASSA-PSS / SHA-256
    RS256  (-257)  RSASSA-PKCS1-v1_5 / SHA-256

Anything else is rejected as malformed at decode time, so a stored key is
always one ``verify_signature`` knows how to check.
"""

from __future__ import annotations

from typing import Any

import cbor2
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from passkeyrp.exceptions import MalformedCeremonyData, SignatureInvalid
from passkeyrp.models.ceremony import CosePublicKey
from passkeyrp.types import (
    COSE_ALG,
    COSE_CRV,
    COSE_KTY,
    COSE_RSA_E,
    COSE_RSA_N,
    COSE_X,
    COSE_Y,
    CoseAlgorithm,
    CoseCurve,
    CoseKeyType,
)

SUPPORTED_ALGORITHMS: tuple[CoseAlgorithm, ...] = (
    CoseAlgorithm.ES256,
    CoseAlgorithm.EDDSA,
    CoseAlgorithm.ES512,
    CoseAlgorithm.PS256,
    CoseAlgorithm.RS256,
)

_EC2_PARAMS: dict[CoseAlgorithm, tuple[CoseCurve, ec.EllipticCurve, int]] = {
    CoseAlgorithm.ES256: (CoseCurve.P256, ec.SECP256R1(), 32),
    CoseAlgorithm.ES512: (CoseCurve.P521, ec.SECP521R1(), 66),
}


def decode_public_key(encoded: bytes) -> CosePublicKey:
    """Decode CBOR-encoded COSE_Key bytes."""
    try:
        cose_map = cbor2.loads(encoded)
    except (cbor2.CBORDecodeError, ValueError, TypeError, EOFError) as exc:
        msg = "Public key is not valid CBOR"
        raise MalformedCeremonyData(msg) from exc
    return public_key_from_map(cose_map, encoded)


def public_key_from_map(cose_map: Any, encoded: bytes) -> CosePublicKey:
    """Build a ``CosePublicKey`` from an already-decoded COSE_Key map."""
    if not isinstance(cose_map, dict):
        msg = "Public key is not a COSE_Key map"
        raise MalformedCeremonyData(msg)

    try:
        algorithm = CoseAlgorithm(cose_map.get(COSE_ALG))
        key_type = CoseKeyType(cose_map.get(COSE_KTY))
    except ValueError as exc:
        msg = f"Unsupported key algorithm or key type: {cose_map.get(COSE_ALG)!r}"
        raise MalformedCeremonyData(msg) from exc

    if algorithm in _EC2_PARAMS:
        key = _load_ec2(cose_map, algorithm, key_type)
    elif algorithm is CoseAlgorithm.EDDSA:
        key = _load_okp(cose_map, key_type)
    else:
        key = _load_rsa(cose_map, key_type)
    return CosePublicKey(algorithm=algorithm, key=key, encoded=encoded)


def verify_signature(public_key: CosePublicKey, signature: bytes, data: bytes) -> None:
    """Verify ``signature`` over ``data``; raises ``SignatureInvalid``."""
    key: Any = public_key.key
    algorithm = public_key.algorithm
    try:
        if algorithm is CoseAlgorithm.ES256:
            key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
        elif algorithm is CoseAlgorithm.ES512:
            key.verify(signature, data, ec.ECDSA(hashes.SHA512()))
        elif algorithm is CoseAlgorithm.EDDSA:
            key.verify(signature, data)
        elif algorithm is CoseAlgorithm.RS256:
            key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
        else:
            pss = padding.PSS(
                mgf=padding.MGF1(hashes.SHA256()),
                salt_length=padding.PSS.DIGEST_LENGTH,
            )
            key.verify(signature, data, pss, hashes.SHA256())
    except (InvalidSignature, ValueError) as exc:
        # ValueError: DER-decoding failure of an ECDSA signature
        raise SignatureInvalid from exc


def _load_ec2(
    cose_map: dict[Any, Any], algorithm: CoseAlgorithm, key_type: CoseKeyType
) -> ec.EllipticCurvePublicKey:
    expected_curve, curve, size = _EC2_PARAMS[algorithm]
    if key_type is not CoseKeyType.EC2 or cose_map.get(COSE_CRV) != expected_curve:
        msg = f"{algorithm.name} requires an EC2 key on {expected_curve.name}"
        raise MalformedCeremonyData(msg)

    x, y = cose_map.get(COSE_X), cose_map.get(COSE_Y)
    if not isinstance(x, bytes) or not isinstance(y, bytes) or len(x) != size or len(y) != size:
        msg = "EC2 key coordinates are missing or have the wrong length"
        raise MalformedCeremonyData(msg)

    numbers = ec.EllipticCurvePublicNumbers(
        int.from_bytes(x, "big"), int.from_bytes(y, "big"), curve
    )
    try:
        return numbers.public_key()
    except ValueError as exc:
        msg = "EC2 point is not on the curve"
        raise MalformedCeremonyData(msg) from exc


def _load_okp(cose_map: dict[Any, Any], key_type: CoseKeyType) -> ed25519.Ed25519PublicKey:
    if key_type is not CoseKeyType.OKP or cose_map.get(COSE_CRV) != CoseCurve.ED25519:
        msg = "EdDSA requires an OKP key on Ed25519"
        raise MalformedCeremonyData(msg)

    x = cose_map.get(COSE_X)
    if not isinstance(x, bytes) or len(x) != 32:
        msg = "Ed25519 key is missing or has the wrong length"
        raise MalformedCeremonyData(msg)
    return ed25519.Ed25519PublicKey.from_public_bytes(x)


def _load_rsa(cose_map: dict[Any, Any], key_type: CoseKeyType) -> rsa.RSAPublicKey:
    if key_type is not CoseKeyType.RSA:
        msg = "RSA algorithms require an RSA key"
        raise MalformedCeremonyData(msg)

    n, e = cose_map.get(COSE_RSA_N), cose_map.get(COSE_RSA_E)
    if not isinstance(n, bytes) or not isinstance(e, bytes) or not n or not e:
        msg = "RSA modulus or exponent is missing"
        raise MalformedCeremonyData(msg)

    numbers = rsa.RSAPublicNumbers(int.from_bytes(e, "big"), int.from_bytes(n, "big"))
    try:
        return numbers.public_key()
    except ValueError as exc:
        msg = "RSA key parameters are invalid"
        raise MalformedCeremonyData(msg) from exc
