"""
Shared fixtures for device trust tests.
"""

import pytest

from kshot.auth.credentials import CredentialStore, PosixCredentialDirs
from kshot.auth.gate import AuthenticationGate
from kshot.auth.signing import SignatureService
from kshot.config import Config
from kshot.context import TrustContext

TEST_SECRET = "test-secret-key"


@pytest.fixture
def config(tmp_path):
    return Config(
        data_dir=tmp_path / "data",
        token_secret=TEST_SECRET,
        token_file=tmp_path / "device-a" / "device-token.json",
    )


@pytest.fixture
def ctx(config, tmp_path):
    trust = TrustContext.open(config, dirs=PosixCredentialDirs(tmp_path / "home"))
    yield trust
    trust.close()


@pytest.fixture
def signer():
    return SignatureService(TEST_SECRET)


@pytest.fixture
def identity(ctx):
    return ctx.identities.create(username="alice")


@pytest.fixture
def other_device(ctx, tmp_path):
    """Store and gate for a second device sharing the same registry."""
    store = CredentialStore(tmp_path / "device-b" / "device-token.json")
    gate = AuthenticationGate(store, ctx.signer, ctx.registry)
    return store, gate
