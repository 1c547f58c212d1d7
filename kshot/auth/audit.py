"""Audit logging for security-relevant authentication events.

Raw token values never reach the log; events carry a short fingerprint
that administrators can match against the ``kshot tokens list`` output.
"""

import hashlib
import logging
from typing import Optional

audit_log = logging.getLogger("kshot.audit")


def token_fingerprint(token: Optional[str]) -> str:
    """First 16 hex chars of SHA-256 over the token."""
    if not token:
        return "-"
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


def log_security_event(
    event: str,
    token: Optional[str],
    identity_id: Optional[str] = None,
    detail: str = "",
) -> None:
    """Record a security event at WARNING level."""
    audit_log.warning(
        f"{event} token_fp={token_fingerprint(token)} "
        f"identity={identity_id or '-'}"
        + (f" detail={detail}" if detail else "")
    )
