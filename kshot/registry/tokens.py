"""
Device token registry.

The registry is the authoritative record of every token ever issued and
its status. Rows are never deleted; ``status`` moves from ``active`` to
``revoked`` exactly once and never back.
"""

import logging
import uuid
from dataclasses import dataclass, asdict
from enum import Enum
from typing import List, Optional, Tuple

from sqlalchemy import literal_column, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth.audit import token_fingerprint
from ..auth.credentials import Credential, SCHEMA_VERSION, utc_now_iso
from ..auth.signing import SignatureService, CURRENT_SIGNATURE_VERSION
from ..errors import AlreadyRevoked, IdentityNotFound, UnknownToken
from .database import Database
from .models import DeviceTokenRow, IdentityRow

logger = logging.getLogger(__name__)


class TokenStatus(Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


@dataclass
class TokenRecord:
    """One row of the registry."""
    token: str
    identity_id: str
    signature: str
    device_label: Optional[str]
    issued_at: str
    last_used: Optional[str] = None
    status: str = TokenStatus.ACTIVE.value
    signature_version: int = CURRENT_SIGNATURE_VERSION

    @property
    def is_active(self) -> bool:
        return self.status == TokenStatus.ACTIVE.value

    @property
    def is_revoked(self) -> bool:
        return self.status == TokenStatus.REVOKED.value

    @property
    def fingerprint(self) -> str:
        return token_fingerprint(self.token)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_credential(self) -> Credential:
        """Rebuild the credential file content for this token."""
        return Credential(
            token=self.token,
            signature=self.signature,
            identity_id=self.identity_id,
            issued_at=self.issued_at,
            device_label=self.device_label,
            signature_version=self.signature_version or CURRENT_SIGNATURE_VERSION,
            schema_version=SCHEMA_VERSION,
        )

    @classmethod
    def from_row(cls, row: DeviceTokenRow) -> "TokenRecord":
        return cls(
            token=row.token,
            identity_id=row.identity_id,
            signature=row.signature,
            device_label=row.device_label,
            issued_at=row.issued_at,
            last_used=row.last_used,
            status=row.status,
            signature_version=row.signature_version,
        )


def default_device_label() -> str:
    return f"device-{uuid.uuid4().hex[:6]}"


class TokenRegistry:
    """
    Issues, revokes and looks up device tokens.

    Args:
        db: Open registry database
        signer: Signature service used to sign issued tokens
    """

    def __init__(self, db: Database, signer: SignatureService):
        self.db = db
        self.signer = signer

    # ============ Reads ============

    def lookup(self, token: str) -> TokenRecord:
        """
        Get the registry row for a token.

        Raises:
            UnknownToken: if no such token was ever issued
        """
        with self.db.transaction() as session:
            row = session.get(DeviceTokenRow, token)
            if row is None:
                raise UnknownToken()
            return TokenRecord.from_row(row)

    def list_for_identity(self, identity_id: str) -> List[TokenRecord]:
        """All tokens of an identity, newest first."""
        query = (
            select(DeviceTokenRow)
            .where(DeviceTokenRow.identity_id == identity_id)
            .order_by(DeviceTokenRow.issued_at.desc(), literal_column("rowid").desc())
        )
        with self.db.transaction() as session:
            return [TokenRecord.from_row(row) for row in session.scalars(query)]

    def active_tokens(self, identity_id: str) -> List[TokenRecord]:
        return [r for r in self.list_for_identity(identity_id) if r.is_active]

    # ============ Writes ============

    def issue(
        self,
        identity_id: str,
        device_label: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> TokenRecord:
        """
        Issue a new active token for an existing identity.

        Raises:
            IdentityNotFound: if the identity does not exist
        """
        with self.db.transaction(session) as s:
            if s.get(IdentityRow, identity_id) is None:
                raise IdentityNotFound(f"Identity not found: {identity_id}")

            token = str(uuid.uuid4())
            issued_at = utc_now_iso()
            label = device_label or default_device_label()
            record = TokenRecord(
                token=token,
                identity_id=identity_id,
                signature=self.signer.sign(token, identity_id, issued_at, label),
                device_label=label,
                issued_at=issued_at,
                last_used=None,
                status=TokenStatus.ACTIVE.value,
                signature_version=CURRENT_SIGNATURE_VERSION,
            )
            s.add(DeviceTokenRow(**record.to_dict()))
            s.flush()

        logger.info(
            f"Token issued: identity={identity_id} label={label} fp={record.fingerprint}"
        )
        return record

    def revoke(self, token: str, identity_id: Optional[str] = None) -> TokenRecord:
        """
        Revoke a token.

        Args:
            token: Token to revoke
            identity_id: When given, only a token owned by this identity matches

        Raises:
            UnknownToken: if the token does not exist (or is not owned)
            AlreadyRevoked: if the token was revoked before
        """
        with self.db.transaction() as session:
            row = session.get(DeviceTokenRow, token)
            if row is None or (identity_id is not None and row.identity_id != identity_id):
                raise UnknownToken()
            if row.status == TokenStatus.REVOKED.value:
                raise AlreadyRevoked()

            row.status = TokenStatus.REVOKED.value
            record = TokenRecord.from_row(row)

        logger.info(f"Token revoked: identity={record.identity_id} fp={record.fingerprint}")
        return record

    def reissue(
        self,
        identity_id: str,
        device_label: Optional[str] = None,
        revoke_existing: bool = True,
    ) -> Tuple[TokenRecord, List[str]]:
        """
        Issue a fresh token and optionally revoke all other active ones.

        The new token is inserted before the old ones are revoked, inside one
        transaction, so the identity is never left without an active token.

        Returns:
            (new record, tokens that were revoked)
        """
        with self.db.transaction() as session:
            record = self.issue(identity_id, device_label, session=session)

            revoked: List[str] = []
            if revoke_existing:
                others = session.scalars(
                    select(DeviceTokenRow).where(
                        DeviceTokenRow.identity_id == identity_id,
                        DeviceTokenRow.status == TokenStatus.ACTIVE.value,
                        DeviceTokenRow.token != record.token,
                    )
                ).all()
                for row in others:
                    row.status = TokenStatus.REVOKED.value
                revoked = [row.token for row in others]

        logger.info(
            f"Token reissued: identity={identity_id} fp={record.fingerprint} "
            f"revoked={len(revoked)}"
        )
        return record, revoked

    def touch_last_used(self, token: str) -> bool:
        """
        Record that a token was just used.

        Best-effort: a failure is logged and reported as ``False`` but never
        raised, so it cannot turn a valid authentication into a failure.
        """
        try:
            with self.db.transaction() as session:
                session.execute(
                    update(DeviceTokenRow)
                    .where(DeviceTokenRow.token == token)
                    .values(last_used=utc_now_iso())
                )
            return True
        except (SQLAlchemyError, RuntimeError) as e:
            logger.warning(
                f"Could not update last_used for fp={token_fingerprint(token)}: {e}"
            )
            return False
