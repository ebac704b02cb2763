"""Client configuration resolved from arguments and AIDE_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_BACKEND_URL = "http://localhost:54321"


def resolve_config_path(config_path: Path | None = None) -> tuple[Path, str]:
    """Resolve the local state file, preferring explicit overrides.

    Returns:
        Tuple of (resolved_path, reason)
    """
    if config_path:
        return Path(config_path).expanduser(), "argument"

    env_config = os.environ.get("AIDE_CONFIG")
    if env_config:
        return Path(env_config).expanduser(), "env:AIDE_CONFIG"

    return Path.home() / ".aide.conf", "home_default"


@dataclass
class ClientConfig:
    """Where the hosted platform lives and how to address it."""

    backend_url: str = DEFAULT_BACKEND_URL
    anon_key: str = ""
    functions_url: str | None = None
    config_path: Path | None = None
    timeout: float = 30.0

    def __post_init__(self):
        self.backend_url = self.backend_url.rstrip("/")
        if self.functions_url:
            self.functions_url = self.functions_url.rstrip("/")

    @property
    def auth_url(self) -> str:
        return f"{self.backend_url}/auth/v1"

    @property
    def rest_url(self) -> str:
        return f"{self.backend_url}/rest/v1"

    @property
    def resolved_functions_url(self) -> str:
        return self.functions_url or f"{self.backend_url}/functions/v1"

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """Build a config from AIDE_BACKEND_URL, AIDE_ANON_KEY and AIDE_FUNCTIONS_URL.

        Keyword overrides that are not None win over the environment.
        """
        values = {
            "backend_url": os.environ.get("AIDE_BACKEND_URL", DEFAULT_BACKEND_URL),
            "anon_key": os.environ.get("AIDE_ANON_KEY", ""),
            "functions_url": os.environ.get("AIDE_FUNCTIONS_URL") or None,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
