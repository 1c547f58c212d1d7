"""
First-run bootstrap.

When no identity exists yet, creates one ordinary identity, issues its
first token and writes the credential on this device, all in one registry
transaction.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import AlreadyInitialized
from ..registry.identities import Identity, IdentityStore, Role
from ..registry.tokens import TokenRegistry
from .credentials import Credential, CredentialStore, DeviceSetupFlag

logger = logging.getLogger(__name__)


@dataclass
class BootstrapResult:
    identity: Identity
    credential: Credential


class IdentityBootstrap:

    def __init__(
        self,
        identities: IdentityStore,
        registry: TokenRegistry,
        store: CredentialStore,
        setup_flag: Optional[DeviceSetupFlag] = None,
    ):
        self.identities = identities
        self.registry = registry
        self.store = store
        self.setup_flag = setup_flag

    def bootstrap(self, device_label: Optional[str] = None) -> BootstrapResult:
        """
        Create the first identity and credential.

        The emptiness check, both inserts and the credential write happen
        under one ``BEGIN IMMEDIATE`` transaction; a second concurrent caller
        waits and then sees a non-empty store.

        Raises:
            AlreadyInitialized: if any identity already exists
        """
        with self.identities.db.transaction() as session:
            if self.identities.count(session=session) > 0:
                raise AlreadyInitialized()

            identity = self.identities.create(role=Role.USER, session=session)
            record = self.registry.issue(identity.identity_id, device_label, session=session)
            credential = record.to_credential()

            # Written before commit: a failed write rolls back the registry
            self.store.write(credential)

        if self.setup_flag is not None:
            self.setup_flag.mark_completed()

        logger.info(
            f"Bootstrap complete: identity={identity.identity_id} "
            f"credential={self.store.path}"
        )
        return BootstrapResult(identity=identity, credential=credential)
