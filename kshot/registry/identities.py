"""
Minimal view of the identity store.

Identities (accounts, profiles) belong to the surrounding application.
This module exposes only what device trust needs: existence, count, role,
and creation of the bootstrap identity.
"""

import logging
import uuid
from dataclasses import dataclass, asdict
from enum import Enum
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..auth.credentials import utc_now_iso
from ..errors import IdentityNotFound
from .database import Database
from .models import IdentityRow

logger = logging.getLogger(__name__)


class Role(Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass
class Identity:
    """An account tokens can be bound to."""
    identity_id: str
    username: str
    display_name: str
    email: str
    role: str = Role.USER.value
    created_at: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_row(cls, row: IdentityRow) -> "Identity":
        return cls(
            identity_id=row.identity_id,
            username=row.username,
            display_name=row.display_name,
            email=row.email,
            role=row.role,
            created_at=row.created_at,
        )


class IdentityStore:
    """
    Identity table accessor sharing the registry's database.

    Methods taking ``session`` join the caller's transaction when given one.
    """

    def __init__(self, db: Database):
        self.db = db

    def count(self, session: Optional[Session] = None) -> int:
        with self.db.transaction(session) as s:
            return s.scalar(select(func.count()).select_from(IdentityRow))

    def exists(self, identity_id: str, session: Optional[Session] = None) -> bool:
        with self.db.transaction(session) as s:
            return s.get(IdentityRow, identity_id) is not None

    def get(self, identity_id: str) -> Optional[Identity]:
        with self.db.transaction() as s:
            row = s.get(IdentityRow, identity_id)
            return Identity.from_row(row) if row else None

    def require(self, identity_id: str) -> Identity:
        identity = self.get(identity_id)
        if identity is None:
            raise IdentityNotFound(f"Identity not found: {identity_id}")
        return identity

    def list(self) -> List[Identity]:
        with self.db.transaction() as s:
            rows = s.scalars(select(IdentityRow).order_by(IdentityRow.created_at)).all()
            return [Identity.from_row(row) for row in rows]

    def create(
        self,
        username: Optional[str] = None,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
        role: Role = Role.USER,
        identity_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> Identity:
        """Insert a new identity. Defaults mirror the generated bootstrap account."""
        identity_id = identity_id or str(uuid.uuid4())
        username = username or f"user_{identity_id[:8]}"
        identity = Identity(
            identity_id=identity_id,
            username=username,
            display_name=display_name or f"User {identity_id[:6]}",
            email=email or f"{username}@local",
            role=role.value,
            created_at=utc_now_iso(),
        )

        with self.db.transaction(session) as s:
            s.add(IdentityRow(**identity.to_dict()))
            s.flush()

        logger.info(f"Identity created: {identity.username} ({identity.identity_id})")
        return identity

    def set_role(self, identity_id: str, role: Role) -> Identity:
        with self.db.transaction() as s:
            row = s.get(IdentityRow, identity_id)
            if row is None:
                raise IdentityNotFound(f"Identity not found: {identity_id}")
            row.role = role.value
            identity = Identity.from_row(row)
        logger.info(f"Identity {identity_id} role set to {role.value}")
        return identity
