"""
Tests for the kshot command line.
"""

import json
import os

import pytest
from click.testing import CliRunner

from kshot.cli import main

TEST_SECRET = "test-secret-key"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def device_env(tmp_path):
    """Environment for two devices sharing one registry."""
    base = {
        "KSHOT_DATA_DIR": str(tmp_path / "data"),
        "KSHOT_DATABASE_PATH": str(tmp_path / "data" / "k-shot.db"),
        "TOKEN_SECRET_KEY": TEST_SECRET,
    }
    device_a = dict(base, LMS_DEVICE_TOKEN_FILE=str(tmp_path / "a" / "device-token.json"))
    device_b = dict(base, LMS_DEVICE_TOKEN_FILE=str(tmp_path / "b" / "device-token.json"))
    return device_a, device_b


def _identity_of(env) -> str:
    with open(env["LMS_DEVICE_TOKEN_FILE"], encoding="utf-8") as f:
        return json.load(f)["identity_id"]


class TestInit:
    """kshot init / whoami / status"""

    def test_status_before_init(self, runner, device_env):
        env, _ = device_env
        result = runner.invoke(main, ["status"], env=env)
        assert result.exit_code == 0
        assert "Identities" in result.output

    def test_init_then_whoami(self, runner, device_env):
        env, _ = device_env

        result = runner.invoke(main, ["init", "--label", "kitchen-pc"], env=env)
        assert result.exit_code == 0, result.output
        identity_id = _identity_of(env)

        result = runner.invoke(main, ["whoami"], env=env)
        assert result.exit_code == 0
        assert identity_id in result.output

    def test_init_twice(self, runner, device_env):
        env, _ = device_env
        assert runner.invoke(main, ["init"], env=env).exit_code == 0
        result = runner.invoke(main, ["init"], env=env)
        assert result.exit_code == 1
        assert "already exist" in result.output

    def test_whoami_without_credential(self, runner, device_env):
        env, _ = device_env
        result = runner.invoke(main, ["whoami"], env=env)
        assert result.exit_code == 1
        assert "CREDENTIAL_MISSING" in result.output

    def test_required_secret_missing(self, runner, device_env):
        env, _ = device_env
        env = dict(env, TOKEN_SECRET_KEY="", KSHOT_REQUIRE_TOKEN_SECRET="1")
        result = runner.invoke(main, ["status"], env=env)
        assert result.exit_code == 1
        assert "TOKEN_SECRET_KEY" in result.output

    def test_development_secret_warning(self, runner, device_env):
        env, _ = device_env
        result = runner.invoke(main, ["status"], env=dict(env, TOKEN_SECRET_KEY=""))
        assert result.exit_code == 0
        assert "development" in result.output


class TestVerify:
    """kshot verify FILE"""

    def test_valid_file(self, runner, device_env):
        env, _ = device_env
        runner.invoke(main, ["init"], env=env)
        result = runner.invoke(main, ["verify", env["LMS_DEVICE_TOKEN_FILE"]], env=env)
        assert result.exit_code == 0
        assert "Token active" in result.output

    def test_tampered_file(self, runner, device_env, tmp_path):
        env, _ = device_env
        runner.invoke(main, ["init"], env=env)
        with open(env["LMS_DEVICE_TOKEN_FILE"], encoding="utf-8") as f:
            data = json.load(f)
        data["device_label"] = "forged"
        forged = tmp_path / "forged.json"
        forged.write_text(json.dumps(data))

        result = runner.invoke(main, ["verify", str(forged)], env=env)
        assert result.exit_code == 1
        assert "Signature invalid" in result.output


class TestTokens:
    """kshot identity / tokens"""

    def test_promote_and_list(self, runner, device_env):
        env, _ = device_env
        runner.invoke(main, ["init"], env=env)
        identity_id = _identity_of(env)

        result = runner.invoke(main, ["identity", "promote", identity_id], env=env)
        assert result.exit_code == 0

        result = runner.invoke(main, ["identity", "list"], env=env)
        assert result.exit_code == 0
        assert "admin" in result.output

    def test_promote_unknown(self, runner, device_env):
        env, _ = device_env
        result = runner.invoke(main, ["identity", "promote", "ghost"], env=env)
        assert result.exit_code == 1

    def test_reissue_and_import_on_second_device(self, runner, device_env, tmp_path):
        env_a, env_b = device_env
        runner.invoke(main, ["init"], env=env_a)
        identity_id = _identity_of(env_a)
        transfer = tmp_path / "transfer.json"

        result = runner.invoke(
            main,
            ["tokens", "reissue", identity_id, "--label", "laptop-b", "-o", str(transfer)],
            env=env_a,
        )
        assert result.exit_code == 0, result.output
        assert json.loads(transfer.read_text())["device_label"] == "laptop-b"

        result = runner.invoke(main, ["tokens", "import", str(transfer)], env=env_b)
        assert result.exit_code == 0, result.output

        assert identity_id in runner.invoke(main, ["whoami"], env=env_b).output
        result = runner.invoke(main, ["whoami"], env=env_a)
        assert result.exit_code == 1
        assert "TOKEN_REVOKED" in result.output

    def test_revoke_twice(self, runner, device_env):
        env, _ = device_env
        runner.invoke(main, ["init"], env=env)
        identity_id = _identity_of(env)
        with open(env["LMS_DEVICE_TOKEN_FILE"], encoding="utf-8") as f:
            token = json.load(f)["token"]

        result = runner.invoke(main, ["tokens", "revoke", identity_id, token], env=env)
        assert result.exit_code == 0

        result = runner.invoke(main, ["tokens", "revoke", identity_id, token], env=env)
        assert result.exit_code == 1
        assert "ALREADY_REVOKED" in result.output

    def test_export_to_file(self, runner, device_env, tmp_path):
        env, _ = device_env
        runner.invoke(main, ["init"], env=env)
        identity_id = _identity_of(env)
        with open(env["LMS_DEVICE_TOKEN_FILE"], encoding="utf-8") as f:
            installed = json.load(f)
        out = tmp_path / "export.json"

        result = runner.invoke(
            main, ["tokens", "export", identity_id, installed["token"], "-o", str(out)], env=env
        )
        assert result.exit_code == 0
        assert json.loads(out.read_text()) == installed

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_written_credentials_are_private(self, runner, device_env, tmp_path):
        env, _ = device_env
        runner.invoke(main, ["init"], env=env)
        identity_id = _identity_of(env)
        with open(env["LMS_DEVICE_TOKEN_FILE"], encoding="utf-8") as f:
            token = json.load(f)["token"]
        exported = tmp_path / "out" / "export.json"
        reissued = tmp_path / "out" / "reissue.json"

        result = runner.invoke(
            main, ["tokens", "export", identity_id, token, "-o", str(exported)], env=env
        )
        assert result.exit_code == 0, result.output
        result = runner.invoke(
            main, ["tokens", "reissue", identity_id, "-o", str(reissued)], env=env
        )
        assert result.exit_code == 0, result.output

        assert (exported.stat().st_mode & 0o777) == 0o600
        assert (reissued.stat().st_mode & 0o777) == 0o600
        assert sorted(p.name for p in exported.parent.iterdir()) == ["export.json", "reissue.json"]

    def test_import_garbage(self, runner, device_env, tmp_path):
        env, _ = device_env
        runner.invoke(main, ["init"], env=env)
        garbage = tmp_path / "garbage.json"
        garbage.write_text("not a credential")

        result = runner.invoke(main, ["tokens", "import", str(garbage)], env=env)
        assert result.exit_code == 1
        assert "CREDENTIAL_CORRUPT" in result.output
