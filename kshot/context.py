"""
Component wiring.

``TrustContext`` builds every device trust component from a ``Config`` and
owns the registry connection. Open it once at process start, pass it to
whoever needs it, close it at shutdown.
"""

import logging
from typing import Optional

from .auth.admin import AdminTokenAdministration
from .auth.bootstrap import IdentityBootstrap
from .auth.credentials import (
    CredentialDirs,
    CredentialStore,
    DeviceSetupFlag,
    select_credential_dirs,
)
from .auth.gate import AuthenticationGate
from .auth.signing import SignatureService
from .config import Config
from .registry.database import Database
from .registry.identities import IdentityStore
from .registry.tokens import TokenRegistry

logger = logging.getLogger(__name__)


class TrustContext:
    """
    All device trust components for one process.

    Usage:
        with TrustContext.open(Config.from_env()) as ctx:
            identity_id = ctx.gate.resolve()
    """

    def __init__(
        self,
        config: Config,
        dirs: Optional[CredentialDirs] = None,
        db: Optional[Database] = None,
    ):
        self.config = config
        self.signer = SignatureService.from_config(config)
        self.store = CredentialStore.from_config(config, dirs or select_credential_dirs())
        self.setup_flag = DeviceSetupFlag.beside(self.store)

        self.db = db or Database(config.registry_path)
        self.identities = IdentityStore(self.db)
        self.registry = TokenRegistry(self.db, self.signer)

        self.gate = AuthenticationGate(self.store, self.signer, self.registry)
        self.bootstrapper = IdentityBootstrap(
            self.identities, self.registry, self.store, self.setup_flag
        )
        self.admin = AdminTokenAdministration(
            self.identities, self.registry, self.signer, self.store
        )

    @classmethod
    def open(
        cls,
        config: Config,
        dirs: Optional[CredentialDirs] = None,
    ) -> "TrustContext":
        ctx = cls(config, dirs=dirs)
        ctx.start()
        return ctx

    def start(self) -> None:
        self.db.open()
        logger.debug(f"Trust context started, credential at {self.store.path}")

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "TrustContext":
        if not self.db.is_open:
            self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
