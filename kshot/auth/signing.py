"""
Credential signatures.

A signature is an HMAC-SHA256 over the credential's fields, keyed with the
deployment secret. Signing is dispatched by ``signature_version`` so that a
future algorithm can be introduced while older credentials stay verifiable.
"""

import logging
import secrets
from typing import Callable, Dict, Optional, TYPE_CHECKING

from cryptography.hazmat.primitives import hashes, hmac

from ..config import Config, DEVELOPMENT_TOKEN_SECRET

if TYPE_CHECKING:
    from .credentials import Credential

logger = logging.getLogger(__name__)

CURRENT_SIGNATURE_VERSION = 1

Signer = Callable[[bytes, str, str, str, Optional[str]], str]


def canonical_message(
    token: str,
    identity_id: str,
    issued_at: str,
    device_label: Optional[str] = None,
) -> bytes:
    """Canonical bytes for signing: ``token:identity_id:issued_at:label``."""
    return f"{token}:{identity_id}:{issued_at}:{device_label or ''}".encode("utf-8")


def _sign_v1(
    key: bytes,
    token: str,
    identity_id: str,
    issued_at: str,
    device_label: Optional[str],
) -> str:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(canonical_message(token, identity_id, issued_at, device_label))
    return h.finalize().hex()


SIGNERS: Dict[int, Signer] = {
    1: _sign_v1,
}


class SignatureService:
    """
    Computes and verifies credential signatures.

    Args:
        secret: The signing secret
        insecure: True when ``secret`` is the built-in development secret
    """

    def __init__(self, secret: str, insecure: bool = False):
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._key = secret.encode("utf-8")
        self.is_insecure = insecure or secret == DEVELOPMENT_TOKEN_SECRET

        if self.is_insecure:
            logger.warning(
                "TOKEN_SECRET_KEY is not set; signing with the fixed development "
                "secret. Only acceptable on a trusted, non-internet-exposed LAN."
            )

    @classmethod
    def from_config(cls, config: Config) -> "SignatureService":
        """Build from configuration (raises ConfigError if a secret is required)."""
        return cls(config.signing_secret(), insecure=config.uses_development_secret)

    def sign(
        self,
        token: str,
        identity_id: str,
        issued_at: str,
        device_label: Optional[str] = None,
        version: int = CURRENT_SIGNATURE_VERSION,
    ) -> str:
        """
        Sign credential fields.

        Returns:
            Hex-encoded signature

        Raises:
            ValueError: if ``version`` has no registered algorithm
        """
        signer = SIGNERS.get(version)
        if signer is None:
            raise ValueError(f"Unsupported signature version: {version}")
        return signer(self._key, token, identity_id, issued_at, device_label)

    def verify(self, credential: "Credential") -> bool:
        """Recompute the signature from the credential's own fields and compare."""
        version = credential.signature_version
        if version not in SIGNERS:
            logger.warning(f"Cannot verify credential with unknown signature version {version}")
            return False

        if not isinstance(credential.signature, str) or not credential.signature:
            return False

        expected = self.sign(
            credential.token,
            credential.identity_id,
            credential.issued_at,
            credential.device_label,
            version=version,
        )
        return secrets.compare_digest(
            expected.encode("ascii"),
            credential.signature.encode("utf-8"),
        )
