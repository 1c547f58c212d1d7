"""
Administrator token operations.

Callers must already have established that the requester is an
administrator; this module only enforces token ownership.
"""

import logging
from typing import Any, List, Mapping, Optional, Union

from ..errors import (
    CredentialCorrupt,
    SignatureInvalid,
    TokenRevoked,
    UnknownToken,
)
from ..registry.identities import IdentityStore
from ..registry.tokens import TokenRecord, TokenRegistry
from .audit import log_security_event
from .credentials import Credential, CredentialStore
from .signing import SignatureService

logger = logging.getLogger(__name__)

CredentialInput = Union[Credential, Mapping[str, Any], str, bytes]


class AdminTokenAdministration:
    """
    List, revoke, reissue, export and import device credentials.

    Args:
        identities: Identity store (existence checks)
        registry: Token registry
        signer: Signature service
        store: Credential store of *this* device, the import target
    """

    def __init__(
        self,
        identities: IdentityStore,
        registry: TokenRegistry,
        signer: SignatureService,
        store: CredentialStore,
    ):
        self.identities = identities
        self.registry = registry
        self.signer = signer
        self.store = store

    def list_tokens(self, identity_id: str) -> List[TokenRecord]:
        self.identities.require(identity_id)
        tokens = self.registry.list_for_identity(identity_id)
        logger.debug(f"Listed {len(tokens)} tokens for identity={identity_id}")
        return tokens

    def revoke_token(self, identity_id: str, token: str) -> TokenRecord:
        """Revoke a token owned by ``identity_id``; other owners' tokens are UnknownToken."""
        self.identities.require(identity_id)
        return self.registry.revoke(token, identity_id=identity_id)

    def reissue_token(
        self,
        identity_id: str,
        device_label: Optional[str] = None,
        revoke_existing: bool = True,
    ) -> Credential:
        """Issue a replacement credential to hand over to the target device."""
        self.identities.require(identity_id)
        record, _ = self.registry.reissue(
            identity_id,
            device_label=device_label,
            revoke_existing=revoke_existing,
        )
        return record.to_credential()

    def export_credential(self, identity_id: str, token: str) -> Credential:
        """Rebuild the credential file for a token owned by ``identity_id``."""
        self.identities.require(identity_id)
        record = self.registry.lookup(token)
        if record.identity_id != identity_id:
            raise UnknownToken()
        logger.info(f"Credential exported: identity={identity_id} fp={record.fingerprint}")
        return record.to_credential()

    def import_credential(self, candidate: CredentialInput) -> Credential:
        """
        Install a transferred credential on this device.

        Raises:
            CredentialCorrupt: candidate is not a well-formed credential
            SignatureInvalid: candidate was tampered with
            UnknownToken: token not in the registry
            TokenRevoked: token was revoked
        """
        credential = _coerce_credential(candidate)

        if not self.signer.verify(credential):
            log_security_event(
                "import_signature_invalid", credential.token, credential.identity_id
            )
            raise SignatureInvalid()

        record = self.registry.lookup(credential.token)
        if record.identity_id != credential.identity_id:
            raise UnknownToken()
        if record.is_revoked:
            log_security_event(
                "import_token_revoked", credential.token, credential.identity_id
            )
            raise TokenRevoked()

        self.store.write(credential)
        logger.info(
            f"Credential imported: identity={credential.identity_id} "
            f"fp={record.fingerprint} path={self.store.path}"
        )
        return credential


def _coerce_credential(candidate: CredentialInput) -> Credential:
    if isinstance(candidate, Credential):
        return candidate
    if isinstance(candidate, bytes):
        try:
            candidate = candidate.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CredentialCorrupt(f"Credential is not UTF-8: {e}")
    if isinstance(candidate, str):
        return Credential.from_json(candidate)
    return Credential.from_dict(candidate)
