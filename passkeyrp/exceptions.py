"""Exception hierarchy for passkeyrp.

Every failure of a ceremony is raised as one of these classes. ``code`` and
``status_code`` are read by the web layer to build the error response; the
message never carries key material, counters or another user's existence.
"""


class PasskeyRPError(Exception):
    """Base exception for all passkeyrp errors."""

    code = "internal_error"
    status_code = 500
    detail = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.detail)


class StorageError(PasskeyRPError):
    """Raised when storage operations fail."""

    code = "storage_error"
    detail = "Storage unavailable"


class ConfigError(PasskeyRPError):
    """Raised when configuration is invalid."""

    code = "config_error"
    detail = "Invalid configuration"


# ---------------------------------------------------------------------------
# Ceremony validation
# ---------------------------------------------------------------------------


class CeremonyError(PasskeyRPError):
    """A registration or authentication ceremony was rejected."""

    code = "ceremony_rejected"
    status_code = 400
    detail = "Ceremony rejected"


class MalformedCeremonyData(CeremonyError):
    code = "malformed_ceremony_data"
    detail = "Authenticator response is malformed"


class CeremonyTypeMismatch(CeremonyError):
    code = "ceremony_type_mismatch"
    detail = "Unexpected ceremony type"


class ChallengeMismatch(CeremonyError):
    code = "challenge_mismatch"
    detail = "Challenge does not match"


class OriginMismatch(CeremonyError):
    code = "origin_mismatch"
    detail = "Origin does not match"


class RpIdMismatch(CeremonyError):
    code = "rp_id_mismatch"
    detail = "Relying party ID does not match"


class AuthenticatorFlagsRejected(CeremonyError):
    code = "authenticator_flags_rejected"
    detail = "User presence or verification missing"


class NoValidChallenge(CeremonyError):
    code = "no_valid_challenge"
    detail = "No valid challenge found"


class CredentialNotFound(CeremonyError):
    code = "credential_not_found"
    detail = "Credential not found"


class UserHandleMismatch(CeremonyError):
    code = "user_handle_mismatch"
    detail = "Assertion user handle does not match the account"


# ---------------------------------------------------------------------------
# Security violations (logged at error level by the service layer)
# ---------------------------------------------------------------------------


class SecurityViolation(CeremonyError):
    """A ceremony failed in a way that may indicate an attack."""

    code = "security_violation"


class SignatureInvalid(SecurityViolation):
    code = "signature_invalid"
    detail = "Signature verification failed"


class CloneDetected(SecurityViolation):
    code = "clone_detected"
    detail = "Possible authenticator cloning detected"


class DuplicateCredential(SecurityViolation):
    code = "duplicate_credential"
    detail = "Credential is already registered"


class CounterRegression(SecurityViolation):
    code = "counter_regression"
    detail = "Signature counter did not increase"


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class NoSuchUser(PasskeyRPError):
    code = "no_such_user"
    status_code = 404
    detail = "User not found"


class NoRegisteredCredentials(PasskeyRPError):
    code = "no_registered_credentials"
    status_code = 400
    detail = "No passkeys registered for this user"


class RegistrationClosed(PasskeyRPError):
    code = "registration_closed"
    status_code = 403
    detail = "Sign in to add another passkey to this account"
