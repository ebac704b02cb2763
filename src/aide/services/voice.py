"""Voice input, the voice command log, and spoken replies."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from aide.errors import AideError, AuthenticationRequired
from aide.services.capabilities import AudioPlayer, Capability, SpeechRecognizer, Supported, Unsupported
from aide.services.context import AppContext

logger = logging.getLogger(__name__)

RECENT_COMMANDS_LIMIT = 10


def command_response(command: str) -> str:
    return f'Received command: "{command}"'


class VoiceInput:
    """Single-shot speech input toggled on and off."""

    def __init__(
        self,
        ctx: AppContext,
        recognizer: Capability[SpeechRecognizer],
        on_transcript: Callable[[str], Awaitable[Any] | None],
    ):
        self.ctx = ctx
        self.recognizer = recognizer
        self._on_transcript = on_transcript
        self.listening = False
        self._pending: set[asyncio.Task] = set()

    @property
    def supported(self) -> bool:
        return isinstance(self.recognizer, Supported)

    def toggle(self) -> bool:
        """Start or stop listening; returns whether input is now listening."""
        if isinstance(self.recognizer, Unsupported):
            self.ctx.notices.error("Not supported", self.recognizer.reason)
            return False
        if self.listening:
            self.recognizer.handle.stop()
            self.listening = False
            return False
        self.recognizer.handle.start(self._on_result, self._on_error)
        self.listening = True
        self.ctx.notices.info("Listening...", "Speak your message now")
        return True

    def _on_result(self, transcript: str) -> None:
        self.listening = False
        result = self._on_transcript(transcript)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    def _on_error(self, error: Exception) -> None:
        logger.warning("Speech recognition failed: %s", error)
        self.listening = False
        self.ctx.notices.error("Error", "Failed to recognize speech")

    async def drain(self) -> None:
        """Wait for transcript handlers still running."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


@dataclass
class VoiceCommand:
    id: str
    command: str
    response: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "VoiceCommand":
        return cls(
            id=row["id"],
            command=row.get("command") or "",
            response=row.get("response"),
            created_at=row.get("created_at"),
        )


class VoiceCommandLog:
    """Records spoken commands in the `voice_commands` table."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx

    async def record(self, command: str) -> str | None:
        """Store a command with its response; returns the response text."""
        session = await self.ctx.auth.get_session()
        if session is None:
            return None
        response = command_response(command)
        try:
            await self.ctx.data.insert(
                "voice_commands", {"user_id": session.user.id, "command": command, "response": response}
            )
        except AideError as e:
            logger.warning("Saving voice command failed: %s", e)
            self.ctx.notices.error("Error", "Failed to save command")
            return None
        self.ctx.notices.info("Command processed", response)
        return response

    async def recent(self, limit: int = RECENT_COMMANDS_LIMIT) -> list[VoiceCommand]:
        try:
            rows = await self.ctx.data.select(
                "voice_commands", order="created_at", ascending=False, limit=limit
            )
        except AideError as e:
            logger.warning("Loading voice commands failed: %s", e)
            return []
        return [VoiceCommand.from_row(row) for row in rows]


class TextToSpeech:
    """Reads messages aloud; speaking the playing message again stops it."""

    def __init__(
        self,
        ctx: AppContext,
        player: Capability[AudioPlayer],
        voice_id: Callable[[], str],
    ):
        self.ctx = ctx
        self.player = player
        self._voice_id = voice_id
        self.speaking: str | None = None

    def stop(self) -> None:
        if self.speaking is not None and isinstance(self.player, Supported):
            self.player.handle.stop()
        self.speaking = None

    async def speak(self, text: str, message_id: str) -> bool:
        """Toggle playback of `text`; returns whether audio is now playing."""
        if self.speaking == message_id:
            self.stop()
            return False
        self.stop()
        if isinstance(self.player, Unsupported):
            self.ctx.notices.error("Not supported", self.player.reason)
            return False

        self.speaking = message_id
        try:
            session = await self.ctx.auth.get_session()
            if session is None:
                raise AuthenticationRequired("Not authenticated")
            audio = await self.ctx.functions.text_to_speech(text, self._voice_id(), session.access_token)
        except AideError as e:
            logger.warning("Text to speech failed: %s", e)
            self.speaking = None
            self.ctx.notices.error("Error", "Failed to convert text to speech.")
            return False

        try:
            self.player.handle.play(audio, lambda: self._finished(message_id))
        except Exception:
            logger.warning("Audio playback failed", exc_info=True)
            self.speaking = None
            self.ctx.notices.error("Playback Error", "Failed to play audio.")
            return False
        return True

    def _finished(self, message_id: str) -> None:
        if self.speaking == message_id:
            self.speaking = None
