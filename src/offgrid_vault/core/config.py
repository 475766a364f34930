# Process Configuration
#
# Settings that belong to the running process rather than to a vault:
# where the embedded store and audit logs live, and where the local API
# listens. Read once from the environment (a .env file is honoured).
# Per-vault settings live in vault.models.VaultSettings.

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "OFFGRID_VAULT_"

DEFAULT_DATA_DIR = "data"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_HEALTH_TIMEOUT = 5.0


@dataclass(frozen=True)
class AppConfig:
    """Process-level configuration, resolved once."""

    data_dir: Path = Path(DEFAULT_DATA_DIR)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT
    session_token: Optional[str] = None     # None: random per process

    @property
    def store_path(self) -> Path:
        """Embedded SQLite store for metadata, servers and folders."""
        return self.data_dir / "vault.db"

    @property
    def audit_log_dir(self) -> Path:
        return self.data_dir / "audit_logs"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "AppConfig":
        """Build config from OFFGRID_VAULT_* environment variables."""
        load_dotenv(env_file)
        return cls(
            data_dir=Path(os.environ.get(f"{ENV_PREFIX}DATA_DIR", DEFAULT_DATA_DIR)),
            host=os.environ.get(f"{ENV_PREFIX}HOST", DEFAULT_HOST),
            port=int(os.environ.get(f"{ENV_PREFIX}PORT", DEFAULT_PORT)),
            health_timeout=float(
                os.environ.get(f"{ENV_PREFIX}HEALTH_TIMEOUT", DEFAULT_HEALTH_TIMEOUT)
            ),
            session_token=os.environ.get(f"{ENV_PREFIX}SESSION_TOKEN") or None,
        )


# ── Singleton ────────────────────────────────────────────────────────

_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get or build the process configuration."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace the singleton (for testing)."""
    global _config
    _config = config
