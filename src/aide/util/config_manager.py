"""Local persisted state: recent accounts, the pending switch hint and the cached auth session."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from aide.errors import StorageParseError
from aide.util.config import resolve_config_path

logger = logging.getLogger(__name__)

LEGACY_ACCOUNTS_KEY = "recent_accounts"
ACCOUNTS_KEY = "recent_accounts_v2"
PENDING_SWITCH_KEY = "switch_to_email"
ACTIVE_USER_KEY = "active_user_id"
AUTH_SESSION_KEY = "auth_session"

# Base keys that may appear in the persisted state file.
CONFIG_BASE_KEYS: set[str] = {
    LEGACY_ACCOUNTS_KEY,  # [{email, username, lastUsed, hasSession}] written by older releases
    ACCOUNTS_KEY,  # [{user_id, email, display_name, last_used_at, credentials?}]
    PENDING_SWITCH_KEY,  # E-mail to pre-fill on the next interactive sign-in, read once
    ACTIVE_USER_KEY,
    AUTH_SESSION_KEY,  # Encrypted session of the signed-in identity
}

ACCOUNT_STATE_KEYS = (LEGACY_ACCOUNTS_KEY, ACCOUNTS_KEY, PENDING_SWITCH_KEY, ACTIVE_USER_KEY, AUTH_SESSION_KEY)


class ConfigManager:
    """Manages the local key/value state file and encryption of stored tokens."""

    def __init__(self, config_path: Path | None = None):
        self.config_path, _reason = resolve_config_path(config_path)
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.key_path = self.config_path.with_name(self.config_path.name + ".key")
        self._fernet: Fernet | None = None

    def _get_fernet(self) -> Fernet:
        """Load the device key, creating it on first use."""
        if self._fernet is None:
            if self.key_path.exists():
                key = self.key_path.read_bytes().strip()
            else:
                key = Fernet.generate_key()
                fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "wb") as f:
                    f.write(key)
            self._fernet = Fernet(key)
        return self._fernet

    def encrypt_value(self, value: str) -> str:
        """Encrypt a value with the device key.

        Args:
            value: Plain text value to encrypt

        Returns:
            Fernet token as string
        """
        return self._get_fernet().encrypt(value.encode()).decode()

    def decrypt_value(self, encrypted_value: str) -> str:
        """Decrypt a value written by encrypt_value.

        Raises:
            StorageParseError: If the token is corrupted or the device key changed
        """
        try:
            return self._get_fernet().decrypt(encrypted_value.encode()).decode()
        except (InvalidToken, ValueError) as e:
            raise StorageParseError(f"Could not decrypt stored value: {e}") from e

    def load_config(self) -> dict[str, Any]:
        """Load state from file.

        Returns:
            State dictionary, or empty dict if the file doesn't exist or is unreadable
        """
        if not self.config_path.exists():
            return {}

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (ValueError, OSError) as e:
            logger.warning("Could not load state file %s: %s", self.config_path, e)
            return {}
        if not isinstance(config, dict):
            logger.warning("Ignoring state file %s: top level is not an object", self.config_path)
            return {}
        unknown = set(config) - CONFIG_BASE_KEYS
        if unknown:
            logger.debug("State file %s has unknown keys: %s", self.config_path, ", ".join(sorted(unknown)))
        return config

    def save_config(self, config: dict[str, Any]) -> None:
        """Save state to file atomically.

        Args:
            config: State dictionary to save
        """
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.config_path.parent, prefix=".aide_config_", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(config, f, indent=2)
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, self.config_path)
            except Exception:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except IOError as e:
            logger.error("Could not save state file %s: %s", self.config_path, e)

    def get_value(self, key: str, default: Any = None) -> Any:
        return self.load_config().get(key, default)

    def set_value(self, key: str, value: Any) -> None:
        config = self.load_config()
        config[key] = value
        self.save_config(config)

    def delete_value(self, key: str) -> None:
        config = self.load_config()
        if key in config:
            del config[key]
            self.save_config(config)

    def pop_value(self, key: str) -> Any:
        """Read a value and delete it in the same step."""
        config = self.load_config()
        if key not in config:
            return None
        value = config.pop(key)
        self.save_config(config)
        return value

    def get_json_list(self, key: str) -> list[Any]:
        """Read a list value.

        Older releases stored lists as JSON-encoded strings; both shapes are accepted.

        Raises:
            StorageParseError: If the value is not a list or a string holding one
        """
        value = self.load_config().get(key)
        if value is None:
            return []
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise StorageParseError(f"{key} is not valid JSON: {e}") from e
        if not isinstance(value, list):
            raise StorageParseError(f"{key} is not a list")
        return value

    def get_pending_switch(self) -> str | None:
        return self.get_value(PENDING_SWITCH_KEY)

    def set_pending_switch(self, email: str) -> None:
        self.set_value(PENDING_SWITCH_KEY, email)

    def consume_pending_switch(self) -> str | None:
        """Return the pending switch e-mail, deleting it immediately."""
        return self.pop_value(PENDING_SWITCH_KEY)

    def get_active_user_id(self) -> str | None:
        return self.get_value(ACTIVE_USER_KEY)

    def set_active_user_id(self, user_id: str | None) -> None:
        if user_id:
            self.set_value(ACTIVE_USER_KEY, user_id)
        else:
            self.delete_value(ACTIVE_USER_KEY)

    def save_auth_session(self, session: dict[str, Any] | None) -> None:
        """Persist (encrypted) or clear the cached auth session."""
        if session is None:
            self.delete_value(AUTH_SESSION_KEY)
            return
        self.set_value(AUTH_SESSION_KEY, self.encrypt_value(json.dumps(session)))

    def load_auth_session(self) -> dict[str, Any] | None:
        """Load the cached auth session, or None when absent or unreadable."""
        encrypted = self.get_value(AUTH_SESSION_KEY)
        if not encrypted:
            return None
        try:
            data = json.loads(self.decrypt_value(encrypted))
        except (StorageParseError, json.JSONDecodeError) as e:
            logger.warning("Discarding cached auth session: %s", e)
            return None
        return data if isinstance(data, dict) else None

    def clear_account_state(self) -> None:
        """Remove every account-related key (after account deletion)."""
        config = self.load_config()
        for key in ACCOUNT_STATE_KEYS:
            config.pop(key, None)
        self.save_config(config)

