"""
Configuration management for k-shot device trust.

Handles:
- Signing secret (and the insecure development fallback)
- Credential file location overrides
- Registry database location
- API server settings

All settings come from the environment so that a LAN deployment can be
configured without touching files on each device.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
import logging

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".k-shot"
DATABASE_FILE_NAME = "k-shot.db"

# Used only when TOKEN_SECRET_KEY is unset. Safe for a trusted LAN at best.
DEVELOPMENT_TOKEN_SECRET = "development-token-secret"

DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 3030

# Environment variable names
ENV_TOKEN_SECRET = "TOKEN_SECRET_KEY"
ENV_TOKEN_FILE = "LMS_DEVICE_TOKEN_FILE"
ENV_TOKEN_DIR = "LMS_DEVICE_TOKEN_DIR"
ENV_REQUIRE_SECRET = "KSHOT_REQUIRE_TOKEN_SECRET"
ENV_DATA_DIR = "KSHOT_DATA_DIR"
ENV_DATABASE_PATH = "KSHOT_DATABASE_PATH"
ENV_HOST = "KSHOT_HOST"
ENV_PORT = "KSHOT_PORT"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class ServerConfig:
    """Configuration for the API server."""
    host: str = DEFAULT_API_HOST
    port: int = DEFAULT_API_PORT

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
        }


@dataclass
class Config:
    """
    Main device trust configuration.

    Built once at process start with ``Config.from_env()`` and passed to
    ``TrustContext``; nothing reads the environment after that.
    """
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    database_path: Optional[Path] = None

    # Signing
    token_secret: Optional[str] = None
    require_secret: bool = False

    # Credential location overrides
    token_file: Optional[Path] = None
    token_dir: Optional[Path] = None

    server: ServerConfig = field(default_factory=ServerConfig)

    @property
    def registry_path(self) -> Path:
        return self.database_path or self.data_dir / DATABASE_FILE_NAME

    @property
    def uses_development_secret(self) -> bool:
        """True when no signing secret is configured."""
        return not self.token_secret

    def signing_secret(self) -> str:
        """
        Return the secret used to sign credentials.

        Raises:
            ConfigError: if no secret is set and ``require_secret`` is on
        """
        if self.token_secret:
            return self.token_secret
        if self.require_secret:
            raise ConfigError(
                f"{ENV_TOKEN_SECRET} is not set and {ENV_REQUIRE_SECRET} forbids "
                "the development secret"
            )
        return DEVELOPMENT_TOKEN_SECRET

    def ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> dict:
        """Summary for display. Never includes the secret."""
        return {
            "data_dir": str(self.data_dir),
            "database_path": str(self.registry_path),
            "token_file": str(self.token_file) if self.token_file else None,
            "token_dir": str(self.token_dir) if self.token_dir else None,
            "uses_development_secret": self.uses_development_secret,
            "require_secret": self.require_secret,
            "server": self.server.to_dict(),
        }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Load configuration from environment variables."""
        env = os.environ if environ is None else environ

        data_dir = Path(env[ENV_DATA_DIR]) if env.get(ENV_DATA_DIR) else DEFAULT_DATA_DIR
        database_path = env.get(ENV_DATABASE_PATH)
        token_file = env.get(ENV_TOKEN_FILE)
        token_dir = env.get(ENV_TOKEN_DIR)

        port_raw = env.get(ENV_PORT)
        try:
            port = int(port_raw) if port_raw else DEFAULT_API_PORT
        except ValueError:
            raise ConfigError(f"{ENV_PORT} must be an integer, got {port_raw!r}")

        config = cls(
            data_dir=data_dir,
            database_path=Path(database_path) if database_path else None,
            token_secret=env.get(ENV_TOKEN_SECRET) or None,
            require_secret=env.get(ENV_REQUIRE_SECRET, "").strip().lower() in _TRUTHY,
            token_file=Path(token_file) if token_file else None,
            token_dir=Path(token_dir) if token_dir else None,
            server=ServerConfig(host=env.get(ENV_HOST) or DEFAULT_API_HOST, port=port),
        )

        logger.debug(f"Configuration loaded, registry at {config.registry_path}")
        return config
