"""
Device authentication for k-shot.

Provides:
- Credential signatures (HMAC-SHA256, versioned)
- The local device credential file
- The authentication gate resolving the calling identity

Bootstrap and administrator operations depend on the registry and live in
``kshot.auth.bootstrap`` and ``kshot.auth.admin``.
"""

from .credentials import (
    Credential,
    CredentialRead,
    CredentialStore,
    DeviceSetupFlag,
    ReadStatus,
    resolve_credential_path,
    select_credential_dirs,
)
from .signing import SignatureService, CURRENT_SIGNATURE_VERSION
from .gate import AuthenticationGate, CredentialStatus

__all__ = [
    # Credentials
    "Credential",
    "CredentialRead",
    "CredentialStore",
    "DeviceSetupFlag",
    "ReadStatus",
    "resolve_credential_path",
    "select_credential_dirs",
    # Signing
    "SignatureService",
    "CURRENT_SIGNATURE_VERSION",
    # Gate
    "AuthenticationGate",
    "CredentialStatus",
]
