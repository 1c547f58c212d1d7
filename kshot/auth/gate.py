"""
Authentication gate.

Resolves which identity is calling, from the device credential alone.
Called once per privileged operation; results are never cached here.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import (
    CredentialCorrupt,
    CredentialMissing,
    SignatureInvalid,
    TokenRevoked,
    UnknownToken,
)
from .audit import log_security_event, token_fingerprint
from .credentials import CredentialStore, ReadStatus
from .signing import SignatureService

logger = logging.getLogger(__name__)


@dataclass
class CredentialStatus:
    """Non-raising summary of this device's credential, for setup screens."""
    exists: bool
    corrupt: bool = False
    signature_valid: bool = False
    valid_in_registry: bool = False
    identity_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "exists": self.exists,
            "corrupt": self.corrupt,
            "signature_valid": self.signature_valid,
            "valid_in_registry": self.valid_in_registry,
            "identity_id": self.identity_id,
            "error": self.error,
        }


class AuthenticationGate:
    """
    Credential → signature → registry, short-circuiting on the first failure.

    Args:
        store: This device's credential store
        signer: Signature service
        registry: Token registry (``lookup`` and ``touch_last_used``)
    """

    def __init__(self, store: CredentialStore, signer: SignatureService, registry):
        self.store = store
        self.signer = signer
        self.registry = registry

    def resolve(self) -> str:
        """
        Return the identity id bound to this device.

        Raises:
            CredentialMissing: no credential file
            CredentialCorrupt: credential file unparseable
            SignatureInvalid: credential fields were tampered with
            UnknownToken: token not in the registry
            TokenRevoked: token revoked
        """
        result = self.store.read()
        if result.status is ReadStatus.NOT_FOUND:
            raise CredentialMissing()
        if result.status is ReadStatus.CORRUPT:
            raise CredentialCorrupt(result.error)

        credential = result.credential
        if not self.signer.verify(credential):
            log_security_event(
                "signature_invalid", credential.token, credential.identity_id
            )
            raise SignatureInvalid()

        record = self.registry.lookup(credential.token)
        if record.identity_id != credential.identity_id:
            log_security_event(
                "identity_mismatch", credential.token, credential.identity_id,
                detail=f"registry_identity={record.identity_id}",
            )
            raise UnknownToken()
        if record.is_revoked:
            log_security_event("token_revoked", credential.token, credential.identity_id)
            raise TokenRevoked()

        self.registry.touch_last_used(credential.token)
        logger.debug(
            f"Authenticated identity={record.identity_id} "
            f"fp={token_fingerprint(credential.token)}"
        )
        return record.identity_id

    def check(self) -> CredentialStatus:
        """Describe the local credential without raising auth errors."""
        result = self.store.read()
        if result.status is ReadStatus.NOT_FOUND:
            return CredentialStatus(exists=False)
        if result.status is ReadStatus.CORRUPT:
            return CredentialStatus(exists=True, corrupt=True, error=result.error)

        credential = result.credential
        status = CredentialStatus(exists=True, identity_id=credential.identity_id)
        status.signature_valid = self.signer.verify(credential)
        if not status.signature_valid:
            status.error = SignatureInvalid.code
            return status

        try:
            record = self.registry.lookup(credential.token)
        except UnknownToken:
            status.error = UnknownToken.code
            return status

        if record.identity_id != credential.identity_id:
            status.error = UnknownToken.code
        elif record.is_revoked:
            status.error = TokenRevoked.code
        else:
            status.valid_in_registry = True
        return status
