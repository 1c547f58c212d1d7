"""
Local device credential file.

Each device holds exactly one credential file (``device-token.json``)
asserting which identity and token it is bound to. The file is only a
claim: it must be verified with ``SignatureService`` and cross-checked
against the registry before anything trusts it.
"""

import json
import logging
import os
import platform
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from ..errors import CredentialCorrupt

logger = logging.getLogger(__name__)

TOKEN_FILE_NAME = "device-token.json"
SETUP_FLAG_FILE_NAME = "device-setup-completed.json"
SCHEMA_VERSION = "1.0.0"
APP_DIR_NAME = "k-shot"

REQUIRED_FIELDS = ("token", "signature", "identity_id", "issued_at")

# Older credential files name the identity differently
_IDENTITY_ALIASES = ("identity_id", "user_id", "user_sid")


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds, e.g. 2025-11-24T16:25:57.113Z."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Credential:
    """A device credential, exactly as stored in the credential file."""
    token: str
    signature: str
    identity_id: str
    issued_at: str
    device_label: Optional[str] = None
    signature_version: int = 1
    schema_version: str = SCHEMA_VERSION

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "schema_version": self.schema_version,
            "token": self.token,
            "signature": self.signature,
            "identity_id": self.identity_id,
            "issued_at": self.issued_at,
            "signature_version": self.signature_version,
        }
        if self.device_label is not None:
            data["device_label"] = self.device_label
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Any) -> "Credential":
        """
        Create from a parsed JSON object.

        Raises:
            CredentialCorrupt: if the object is not a well-formed credential
        """
        if not isinstance(data, Mapping):
            raise CredentialCorrupt("Credential must be a JSON object")

        identity_id = next(
            (data[key] for key in _IDENTITY_ALIASES if data.get(key)),
            None,
        )
        fields = dict(data)
        fields["identity_id"] = identity_id

        for name in REQUIRED_FIELDS:
            if not isinstance(fields.get(name), str) or not fields[name]:
                raise CredentialCorrupt(f"Credential field missing or invalid: {name}")

        device_label = data.get("device_label")
        if device_label is not None and not isinstance(device_label, str):
            raise CredentialCorrupt("Credential field invalid: device_label")

        signature_version = data.get("signature_version", 1)
        if isinstance(signature_version, bool) or not isinstance(signature_version, int):
            raise CredentialCorrupt("Credential field invalid: signature_version")

        return cls(
            token=fields["token"],
            signature=fields["signature"],
            identity_id=fields["identity_id"],
            issued_at=fields["issued_at"],
            device_label=device_label or None,
            signature_version=signature_version,
            schema_version=str(data.get("schema_version") or SCHEMA_VERSION),
        )

    @classmethod
    def from_json(cls, text: str) -> "Credential":
        """Parse credential JSON text (raises CredentialCorrupt)."""
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            raise CredentialCorrupt(f"Credential is not valid JSON: {e}")
        return cls.from_dict(data)


# ============ Path resolution ============

class CredentialDirs:
    """
    Where credentials live by default on one platform.

    Chosen once at startup by ``select_credential_dirs`` and injected into
    the stores, so nothing else branches on the platform.
    """

    def __init__(self, home: Path):
        self.home = Path(home)

    def default_dir(self) -> Optional[Path]:
        raise NotImplementedError

    def fallback_dir(self) -> Path:
        return self.home / f".{APP_DIR_NAME}" / "credentials"


class PosixCredentialDirs(CredentialDirs):
    """``~/.k-shot/credentials``"""

    def default_dir(self) -> Optional[Path]:
        return self.fallback_dir()


class WindowsCredentialDirs(CredentialDirs):
    """``%APPDATA%\\k-shot\\credentials``, or the home fallback without APPDATA."""

    def __init__(self, home: Path, appdata: Optional[str] = None):
        super().__init__(home)
        self.appdata = appdata

    def default_dir(self) -> Optional[Path]:
        if not self.appdata:
            return None
        return Path(self.appdata) / APP_DIR_NAME / "credentials"


def select_credential_dirs(
    system: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> CredentialDirs:
    """Pick the platform variant for this process."""
    system = system or platform.system()
    env = os.environ if environ is None else environ
    home = home or Path.home()

    if system == "Windows":
        return WindowsCredentialDirs(home, appdata=env.get("APPDATA"))
    return PosixCredentialDirs(home)


def resolve_credential_dir(
    dir_override: Optional[Path],
    dirs: CredentialDirs,
) -> Path:
    """Directory override, then platform default, then home fallback."""
    if dir_override:
        return Path(dir_override)
    return dirs.default_dir() or dirs.fallback_dir()


def resolve_credential_path(
    file_override: Optional[Path],
    dir_override: Optional[Path],
    dirs: CredentialDirs,
) -> Path:
    """
    Resolve the credential file location.

    Priority: explicit file → explicit directory → platform default →
    home fallback. Pure; touches nothing on disk.
    """
    if file_override:
        return Path(file_override)
    return resolve_credential_dir(dir_override, dirs) / TOKEN_FILE_NAME


def atomic_write_json(path: Path, doc: dict, mode: int = 0o600) -> None:
    """Replace ``path`` with ``doc`` so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        # Not meaningful on Windows
        if os.name == "posix":
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


# ============ Stores ============

class ReadStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    CORRUPT = "corrupt"


@dataclass(frozen=True)
class CredentialRead:
    """Outcome of reading the credential file."""
    status: ReadStatus
    path: Path
    credential: Optional[Credential] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status is ReadStatus.FOUND


class CredentialStore:
    """Reads and writes the single credential file of this device."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def from_config(cls, config, dirs: Optional[CredentialDirs] = None) -> "CredentialStore":
        dirs = dirs or select_credential_dirs()
        return cls(resolve_credential_path(config.token_file, config.token_dir, dirs))

    def read(self) -> CredentialRead:
        """
        Read the credential.

        A missing file is ``NOT_FOUND`` and an unparseable one ``CORRUPT``.
        Any other I/O failure (permissions, disk) propagates.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return CredentialRead(ReadStatus.NOT_FOUND, self.path)
        except UnicodeDecodeError as e:
            logger.error(f"Credential file {self.path} is not UTF-8: {e}")
            return CredentialRead(ReadStatus.CORRUPT, self.path, error=str(e))

        try:
            credential = Credential.from_json(raw)
        except CredentialCorrupt as e:
            logger.error(f"Credential file {self.path} is corrupt: {e}")
            return CredentialRead(ReadStatus.CORRUPT, self.path, error=str(e))

        return CredentialRead(ReadStatus.FOUND, self.path, credential=credential)

    def write(self, credential: Credential) -> Path:
        """Atomically replace the credential file."""
        atomic_write_json(self.path, credential.to_dict())
        logger.debug(f"Credential written to {self.path}")
        return self.path


class DeviceSetupFlag:
    """Marks that initial setup has been completed on this device."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def beside(cls, store: CredentialStore) -> "DeviceSetupFlag":
        return cls(store.path.parent / SETUP_FLAG_FILE_NAME)

    def is_completed(self) -> bool:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return False
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Setup flag {self.path} is unreadable: {e}")
            return False
        return isinstance(data, dict) and data.get("setup_completed") is True

    def mark_completed(self) -> None:
        atomic_write_json(
            self.path,
            {"setup_completed": True, "completed_at": utc_now_iso()},
        )
        logger.debug(f"Device setup marked completed: {self.path}")
