"""
Tests for the authentication gate.
"""

import dataclasses
import json
import logging

import pytest
from sqlalchemy.exc import OperationalError

import kshot.registry.tokens as tokens_module
from kshot.auth.credentials import Credential
from kshot.errors import (
    CredentialCorrupt,
    CredentialMissing,
    SignatureInvalid,
    TokenRevoked,
    UnknownToken,
)
from kshot.registry.models import DeviceTokenRow


@pytest.fixture
def issued(ctx, identity):
    """A token issued to ``identity`` and installed on device A."""
    record = ctx.registry.issue(identity.identity_id, "laptop")
    ctx.store.write(record.to_credential())
    return record


class TestResolve:
    """Each failure short-circuits with its own error."""

    def test_missing(self, ctx):
        with pytest.raises(CredentialMissing):
            ctx.gate.resolve()

    def test_corrupt(self, ctx):
        ctx.store.path.parent.mkdir(parents=True, exist_ok=True)
        ctx.store.path.write_text("{ not json")
        with pytest.raises(CredentialCorrupt):
            ctx.gate.resolve()

    def test_valid(self, ctx, identity, issued):
        assert ctx.gate.resolve() == identity.identity_id
        assert ctx.registry.lookup(issued.token).last_used is not None

    def test_tampered_identity(self, ctx, identity, issued, caplog):
        """Swapping identity_id breaks the signature; audit log has no raw token."""
        other = ctx.identities.create(username="mallory")
        data = json.loads(ctx.store.path.read_text())
        data["identity_id"] = other.identity_id
        ctx.store.path.write_text(json.dumps(data))

        caplog.set_level(logging.WARNING, logger="kshot.audit")
        with pytest.raises(SignatureInvalid):
            ctx.gate.resolve()

        assert "signature_invalid" in caplog.text
        assert issued.token not in caplog.text

    def test_tampered_label(self, ctx, issued):
        credential = dataclasses.replace(issued.to_credential(), device_label="desktop")
        ctx.store.write(credential)
        with pytest.raises(SignatureInvalid):
            ctx.gate.resolve()

    def test_unknown_token(self, ctx, identity):
        """Validly signed but never registered."""
        fields = dict(
            token="00000000-0000-4000-8000-000000000000",
            identity_id=identity.identity_id,
            issued_at="2025-11-24T16:25:57.113Z",
            device_label="ghost",
        )
        ctx.store.write(Credential(signature=ctx.signer.sign(**fields), **fields))
        with pytest.raises(UnknownToken):
            ctx.gate.resolve()

    def test_revoked(self, ctx, issued, caplog):
        ctx.registry.revoke(issued.token)
        caplog.set_level(logging.WARNING, logger="kshot.audit")

        with pytest.raises(TokenRevoked):
            ctx.gate.resolve()

        assert "token_revoked" in caplog.text
        assert issued.token not in caplog.text

    def test_revoked_stays_revoked(self, ctx, issued):
        ctx.registry.revoke(issued.token)
        for _ in range(3):
            with pytest.raises(TokenRevoked):
                ctx.gate.resolve()

    def test_identity_mismatch(self, ctx, identity, issued):
        """A credential signed for one identity but registered to another is refused."""
        other = ctx.identities.create(username="bob")
        with ctx.db.transaction() as session:
            session.get(DeviceTokenRow, issued.token).identity_id = other.identity_id
        with pytest.raises(UnknownToken):
            ctx.gate.resolve()

    def test_touch_failure_does_not_fail_auth(self, ctx, identity, issued, monkeypatch):
        def broken():
            raise OperationalError("UPDATE device_tokens", {}, Exception("database is locked"))

        monkeypatch.setattr(tokens_module, "utc_now_iso", broken)
        assert ctx.gate.resolve() == identity.identity_id
        assert ctx.registry.lookup(issued.token).last_used is None

    def test_no_caching(self, ctx, identity, issued):
        """Revocation takes effect on the very next call."""
        assert ctx.gate.resolve() == identity.identity_id
        ctx.registry.revoke(issued.token)
        with pytest.raises(TokenRevoked):
            ctx.gate.resolve()


class TestCheck:
    """Non-raising status report."""

    def test_missing(self, ctx):
        status = ctx.gate.check()
        assert not status.exists

    def test_corrupt(self, ctx):
        ctx.store.path.parent.mkdir(parents=True, exist_ok=True)
        ctx.store.path.write_text("[]")
        status = ctx.gate.check()
        assert status.exists and status.corrupt

    def test_valid(self, ctx, identity, issued):
        status = ctx.gate.check()
        assert status.signature_valid
        assert status.valid_in_registry
        assert status.identity_id == identity.identity_id
        assert status.error is None

    def test_revoked(self, ctx, issued):
        ctx.registry.revoke(issued.token)
        status = ctx.gate.check()
        assert status.signature_valid
        assert not status.valid_in_registry
        assert status.error == TokenRevoked.code

    def test_check_does_not_touch(self, ctx, issued):
        ctx.gate.check()
        assert ctx.registry.lookup(issued.token).last_used is None


class TestDeviceLifecycle:
    """Two devices, one identity: reissue moves trust from A to B."""

    def test_reissue_and_transfer(self, ctx, identity, issued, other_device):
        store_b, gate_b = other_device

        assert ctx.gate.resolve() == identity.identity_id
        with pytest.raises(CredentialMissing):
            gate_b.resolve()

        new_credential = ctx.admin.reissue_token(identity.identity_id, "desktop")
        store_b.write(new_credential)

        assert gate_b.resolve() == identity.identity_id
        with pytest.raises(TokenRevoked):
            ctx.gate.resolve()

    def test_copied_file_works_until_revoked(self, ctx, identity, issued, other_device):
        """Credentials are bearer files; a copy is as good as the original."""
        store_b, gate_b = other_device
        store_b.write(issued.to_credential())

        assert gate_b.resolve() == identity.identity_id
        ctx.registry.revoke(issued.token)
        with pytest.raises(TokenRevoked):
            gate_b.resolve()

    def test_revoke_then_reissue(self, ctx, identity, other_device):
        """Revoking the only token locks the device out until a new one is issued."""
        store_b, gate_b = other_device

        first = ctx.registry.issue(identity.identity_id, "laptop")
        ctx.store.write(first.to_credential())
        assert ctx.gate.resolve() == identity.identity_id

        ctx.admin.revoke_token(identity.identity_id, first.token)
        with pytest.raises(TokenRevoked):
            ctx.gate.resolve()

        second = ctx.admin.reissue_token(identity.identity_id, "laptop")
        store_b.write(second)

        assert ctx.registry.lookup(first.token).is_revoked
        with pytest.raises(TokenRevoked):
            ctx.gate.resolve()
        assert gate_b.resolve() == identity.identity_id
        assert [r.token for r in ctx.registry.active_tokens(identity.identity_id)] == [
            second.token
        ]
