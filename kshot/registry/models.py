"""
Registry tables.
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Text

from .database import Base


class IdentityRow(Base):
    __tablename__ = "identities"
    identity_id = Column(Text, primary_key=True)
    username = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    email = Column(Text, nullable=False)
    role = Column(Text, nullable=False, default="user")
    created_at = Column(Text, nullable=False)


class DeviceTokenRow(Base):
    __tablename__ = "device_tokens"
    __table_args__ = (
        CheckConstraint("status IN ('active', 'revoked')", name="ck_device_tokens_status"),
    )
    token = Column(Text, primary_key=True)
    identity_id = Column(
        Text, ForeignKey("identities.identity_id"), nullable=False, index=True
    )
    """
    Owner of the token
    """
    signature = Column(Text, nullable=False)
    device_label = Column(Text)
    issued_at = Column(Text, nullable=False)
    last_used = Column(Text)
    """
    Best-effort timestamp of the last successful authentication
    """
    status = Column(Text, nullable=False, default="active")
    signature_version = Column(Integer, nullable=False, default=1)
