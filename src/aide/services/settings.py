"""Per-user preferences stored in the `settings` table."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import Any

from aide.client.auth_client import AuthEvent, Session, Subscription
from aide.errors import AideError
from aide.services.context import AppContext

logger = logging.getLogger(__name__)

DEFAULT_VOICE = "george"

VOICE_OPTIONS: dict[str, tuple[str, str]] = {
    "george": ("George (Male, Clear)", "JBFqnCBsd6RMkjVDRZzb"),
    "sarah": ("Sarah (Female, Warm)", "EXAVITQu4vr4xnSDxMaL"),
    "charlie": ("Charlie (Male, Casual)", "IKne3meq5aSn9XLyUdCD"),
    "alice": ("Alice (Female, British)", "Xb7hH8MSUJpSbSDYk0k2"),
    "brian": ("Brian (Male, Deep)", "nPczCjzI2devNBz1zQrb"),
    "lily": ("Lily (Female, Soft)", "pFZP5JQG7iQjIQuC4Bku"),
}

LANGUAGE_OPTIONS: dict[str, str] = {
    "en": "English",
    "es": "Español",
    "fr": "Français",
    "de": "Deutsch",
    "pt": "Português",
    "it": "Italiano",
    "ja": "日本語",
    "ko": "한국어",
    "zh": "中文",
}

THEMES = ("light", "dark", "auto")


def get_voice_id(voice_type: str) -> str:
    """Speech engine voice id for a voice name, the default voice when unknown."""
    option = VOICE_OPTIONS.get(voice_type) or VOICE_OPTIONS[DEFAULT_VOICE]
    return option[1]


@dataclass(frozen=True)
class UserSettings:
    language: str = "en"
    voice_type: str = DEFAULT_VOICE
    notifications_enabled: bool = True
    theme: str = "dark"

    @classmethod
    def from_row(cls, row: dict[str, Any] | None) -> "UserSettings":
        if not row:
            return cls()
        notifications = row.get("notifications_enabled")
        return cls(
            language=row.get("language") or "en",
            voice_type=row.get("voice_type") or DEFAULT_VOICE,
            notifications_enabled=True if notifications is None else bool(notifications),
            theme=row.get("theme") or "dark",
        )

    def validate(self) -> None:
        if self.language not in LANGUAGE_OPTIONS:
            raise ValueError(f"Unknown language: {self.language}")
        if self.voice_type not in VOICE_OPTIONS:
            raise ValueError(f"Unknown voice: {self.voice_type}")
        if self.theme not in THEMES:
            raise ValueError(f"Unknown theme: {self.theme}")


class SettingsStore:
    """Holds the current user's settings, refetched whenever the identity changes."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.settings = UserSettings()
        self._subscription: Subscription | None = None

    def subscribe(self) -> Subscription:
        if self._subscription is None:
            self._subscription = self.ctx.auth.on_auth_state_change(self._on_auth_event)
        return self._subscription

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def _on_auth_event(self, event: AuthEvent, session: Session | None) -> None:
        if event is AuthEvent.TOKEN_REFRESHED:
            return
        await self.load()

    async def load(self) -> UserSettings:
        """Fetch settings for the signed-in user; defaults when signed out or missing."""
        session = await self.ctx.auth.get_session()
        if session is None:
            self.settings = UserSettings()
            return self.settings
        try:
            row = await self.ctx.data.select_one("settings", filters={"user_id": session.user.id})
        except AideError as e:
            logger.warning("Loading settings failed: %s", e)
            return self.settings
        self.settings = UserSettings.from_row(row)
        return self.settings

    async def update(self, **changes: Any) -> UserSettings:
        """Merge `changes` into the current settings and store them.

        Raises:
            ValueError: On an unknown field or option value
        """
        known = {f.name for f in fields(UserSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        updated = replace(self.settings, **changes)
        updated.validate()
        self.settings = updated

        session = await self.ctx.auth.get_session()
        if session is None:
            return updated
        try:
            await self.ctx.data.upsert(
                "settings", {"user_id": session.user.id, **asdict(updated)}, on_conflict="user_id"
            )
        except AideError as e:
            logger.warning("Saving settings failed: %s", e)
            self.ctx.notices.error("Error", "Failed to save settings.")
            return updated
        self.ctx.notices.info("Settings saved")
        return updated

    @property
    def voice_id(self) -> str:
        return get_voice_id(self.settings.voice_type)
