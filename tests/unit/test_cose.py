"""Unit tests for COSE key decoding and signature verification."""

from __future__ import annotations

import cbor2
import pytest
from software_authenticator import cose_key_for, generate_key, sign

from passkeyrp.exceptions import MalformedCeremonyData, SignatureInvalid
from passkeyrp.types import CoseAlgorithm
from passkeyrp.webauthn.cose import decode_public_key, verify_signature

DATA = b"authenticator-data-and-client-hash"


@pytest.mark.unit
class TestDecodePublicKey:
    @pytest.mark.parametrize(
        ("alg", "expected"),
        [
            (-7, CoseAlgorithm.ES256),
            (-8, CoseAlgorithm.EDDSA),
            (-257, CoseAlgorithm.RS256),
        ],
    )
    def test_supported_algorithms(self, alg: int, expected: CoseAlgorithm) -> None:
        encoded = cbor2.dumps(cose_key_for(generate_key(alg), alg))
        key = decode_public_key(encoded)
        assert key.algorithm is expected
        assert key.encoded == encoded

    def test_unknown_algorithm(self) -> None:
        cose = cose_key_for(generate_key(-7), -7)
        cose[3] = -999
        with pytest.raises(MalformedCeremonyData, match="Unsupported"):
            decode_public_key(cbor2.dumps(cose))

    def test_curve_mismatch(self) -> None:
        cose = cose_key_for(generate_key(-7), -7)
        cose[-1] = 2  # P-384 claimed for ES256
        with pytest.raises(MalformedCeremonyData, match="P256"):
            decode_public_key(cbor2.dumps(cose))

    def test_point_not_on_curve(self) -> None:
        cose = cose_key_for(generate_key(-7), -7)
        cose[-3] = b"\x01" * 32
        with pytest.raises(MalformedCeremonyData, match="not on the curve"):
            decode_public_key(cbor2.dumps(cose))

    def test_short_coordinates(self) -> None:
        cose = cose_key_for(generate_key(-7), -7)
        cose[-2] = b"\x01" * 31
        with pytest.raises(MalformedCeremonyData):
            decode_public_key(cbor2.dumps(cose))

    def test_key_type_mismatch(self) -> None:
        cose = cose_key_for(generate_key(-257), -257)
        cose[1] = 2
        with pytest.raises(MalformedCeremonyData, match="RSA"):
            decode_public_key(cbor2.dumps(cose))

    def test_not_a_map(self) -> None:
        with pytest.raises(MalformedCeremonyData):
            decode_public_key(cbor2.dumps([1, 2, 3]))

    def test_not_cbor(self) -> None:
        with pytest.raises(MalformedCeremonyData):
            decode_public_key(b"")


@pytest.mark.unit
class TestVerifySignature:
    @pytest.mark.parametrize("alg", [-7, -8, -37, -257])
    def test_valid_signature(self, alg: int) -> None:
        private_key = generate_key(alg)
        key = decode_public_key(cbor2.dumps(cose_key_for(private_key, alg)))
        verify_signature(key, sign(private_key, alg, DATA), DATA)

    @pytest.mark.parametrize("alg", [-7, -8, -257])
    def test_wrong_data(self, alg: int) -> None:
        private_key = generate_key(alg)
        key = decode_public_key(cbor2.dumps(cose_key_for(private_key, alg)))
        with pytest.raises(SignatureInvalid):
            verify_signature(key, sign(private_key, alg, DATA), DATA + b"x")

    def test_wrong_key(self) -> None:
        key = decode_public_key(cbor2.dumps(cose_key_for(generate_key(-7), -7)))
        with pytest.raises(SignatureInvalid):
            verify_signature(key, sign(generate_key(-7), -7, DATA), DATA)

    def test_garbage_ecdsa_signature(self) -> None:
        key = decode_public_key(cbor2.dumps(cose_key_for(generate_key(-7), -7)))
        with pytest.raises(SignatureInvalid):
            verify_signature(key, b"\x00\x01\x02", DATA)
