"""Token registry module."""
from .database import Base, Database
from .identities import Identity, IdentityStore, Role
from .models import DeviceTokenRow, IdentityRow
from .tokens import (
    TokenRecord,
    TokenRegistry,
    TokenStatus,
)

__all__ = [
    "Base",
    "Database",
    "DeviceTokenRow",
    "Identity",
    "IdentityRow",
    "IdentityStore",
    "Role",
    "TokenRecord",
    "TokenRegistry",
    "TokenStatus",
]
