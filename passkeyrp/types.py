"""Enums and constants for passkeyrp."""

from enum import IntEnum, IntFlag, StrEnum


class ChallengeKind(StrEnum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class ClientDataType(StrEnum):
    CREATE = "webauthn.create"
    GET = "webauthn.get"


class AuthenticatorFlag(IntFlag):
    """Bits of the authenticator data flags byte."""

    USER_PRESENT = 0x01
    USER_VERIFIED = 0x04
    BACKUP_ELIGIBLE = 0x08
    BACKED_UP = 0x10
    ATTESTED_CREDENTIAL_DATA = 0x40
    EXTENSION_DATA = 0x80


class CoseKeyType(IntEnum):
    OKP = 1
    EC2 = 2
    RSA = 3


class CoseAlgorithm(IntEnum):
    ES256 = -7
    EDDSA = -8
    ES512 = -36
    PS256 = -37
    RS256 = -257


class CoseCurve(IntEnum):
    P256 = 1
    P384 = 2
    P521 = 3
    ED25519 = 6


# COSE_Key map labels (RFC 9052 / 9053)
COSE_KTY = 1
COSE_ALG = 3
COSE_CRV = -1
COSE_X = -2
COSE_Y = -3
COSE_RSA_N = -1
COSE_RSA_E = -2
