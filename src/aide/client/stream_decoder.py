"""Incremental decoder for the chat completion event stream."""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any

from aide.errors import DecodeError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def parse_event(payload: str) -> Any:
    """Parse the JSON payload of one `data: ` line.

    Raises:
        DecodeError: If the payload is not valid JSON
    """
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeError(f"{e} in {payload[:80]!r}") from e


def extract_delta(event: Any) -> str | None:
    """Return choices[0].delta.content of a completion chunk, if present."""
    if not isinstance(event, dict):
        return None
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) and content else None


class ChatStreamDecoder:
    """Turns chunks of a `data: {json}` event stream into content deltas.

    Bytes are decoded incrementally (multi-byte characters may be split across
    chunks), complete lines are parsed as they arrive and the partial tail stays
    buffered. Comment lines (`:`) and blank lines are skipped, lines without the
    `data: ` marker are ignored, `[DONE]` ends the stream and a line holding
    malformed JSON is logged and dropped without stopping the decoder.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False
        self.skipped_lines = 0

    def feed_bytes(self, data: bytes) -> list[str]:
        """Feed raw bytes and return the deltas completed by them."""
        return self.feed(self._decoder.decode(data))

    def feed(self, text: str) -> list[str]:
        """Feed decoded text and return the deltas completed by it."""
        if self.done:
            return []
        self._buffer += text
        deltas: list[str] = []

        while not self.done and "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            delta = self._parse_line(line)
            if delta:
                deltas.append(delta)

        return deltas

    def close(self) -> list[str]:
        """Flush a final line that arrived without a trailing newline."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        if not line.strip():
            return []
        delta = self._parse_line(line)
        return [delta] if delta else []

    def _parse_line(self, line: str) -> str | None:
        if line.endswith("\r"):
            line = line[:-1]
        if line.startswith(":") or line.strip() == "":
            return None
        if not line.startswith(DATA_PREFIX):
            return None

        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.done = True
            self._buffer = ""
            return None

        try:
            event = parse_event(payload)
        except DecodeError as e:
            self.skipped_lines += 1
            logger.warning("Skipping malformed stream line: %s", e)
            return None
        return extract_delta(event)


def decode_stream(chunks: list[bytes] | list[str]) -> str:
    """Decode a complete stream at once and return the concatenated content."""
    decoder = ChatStreamDecoder()
    parts: list[str] = []
    for chunk in chunks:
        if isinstance(chunk, bytes):
            parts.extend(decoder.feed_bytes(chunk))
        else:
            parts.extend(decoder.feed(chunk))
    parts.extend(decoder.close())
    return "".join(parts)
