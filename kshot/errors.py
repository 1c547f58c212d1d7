"""
Error kinds raised by the device trust subsystem.

Every error carries a stable ``code`` so the HTTP layer and the CLI can
report precise outcomes without string matching.
"""

from typing import Optional


class TrustError(Exception):
    """Base class for all device trust errors."""
    code = "TRUST_ERROR"
    security_relevant = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__doc__.strip().splitlines()[0])


class ConfigError(TrustError):
    """Invalid or insecure configuration."""
    code = "CONFIG_ERROR"


class AuthError(TrustError):
    """The caller's identity could not be established."""
    code = "AUTH_ERROR"


class CredentialMissing(AuthError):
    """No credential file exists on this device."""
    code = "CREDENTIAL_MISSING"


class CredentialCorrupt(AuthError):
    """The credential file exists but cannot be parsed."""
    code = "CREDENTIAL_CORRUPT"


class SignatureInvalid(AuthError):
    """The credential signature does not match its fields."""
    code = "SIGNATURE_INVALID"
    security_relevant = True


class UnknownToken(AuthError):
    """The token is not present in the registry."""
    code = "UNKNOWN_TOKEN"


class TokenRevoked(AuthError):
    """The token has been revoked."""
    code = "TOKEN_REVOKED"
    security_relevant = True


class AlreadyRevoked(TrustError):
    """The token was already revoked."""
    code = "ALREADY_REVOKED"


class AlreadyInitialized(TrustError):
    """Identities already exist; bootstrap is not allowed."""
    code = "ALREADY_INITIALIZED"


class IdentityNotFound(TrustError):
    """The identity does not exist."""
    code = "IDENTITY_NOT_FOUND"
