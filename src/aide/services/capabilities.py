"""Device capabilities (speech input, audio output, notifications), probed once."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Protocol, TypeVar, Union

from aide.errors import PlatformUnsupported

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Supported(Generic[T]):
    handle: T


@dataclass(frozen=True)
class Unsupported:
    reason: str


Capability = Union[Supported[T], Unsupported]


def probe(name: str, factory: Callable[[], T] | None) -> "Capability[T]":
    """Build a capability handle, or record why the platform cannot provide it."""
    if factory is None:
        return Unsupported(f"{name} is not available on this platform")
    try:
        return Supported(factory())
    except PlatformUnsupported as e:
        logger.info("%s unsupported: %s", name, e)
        return Unsupported(str(e) or f"{name} is not available on this platform")


class Notifier(Protocol):
    def notify(self, title: str, body: str) -> None: ...


class SpeechRecognizer(Protocol):
    """Single-shot recognizer: start() listens, the transcript arrives via callback."""

    def start(self, on_result: Callable[[str], None], on_error: Callable[[Exception], None]) -> None: ...

    def stop(self) -> None: ...


class AudioPlayer(Protocol):
    def play(self, audio: bytes, on_finished: Callable[[], None]) -> None: ...

    def stop(self) -> None: ...
