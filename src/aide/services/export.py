"""Export of everything the signed-in user owns as one JSON document."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

from aide.errors import AuthenticationRequired
from aide.services.context import AppContext

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
MAX_PAGES = 1000


async def fetch_all_pages(
    fetch_page: Callable[[int, int], Awaitable[list[dict[str, Any]]]],
    page_size: int = PAGE_SIZE,
    max_pages: int = MAX_PAGES,
) -> list[dict[str, Any]]:
    """Collect rows page by page until a short page, capped at `max_pages`."""
    out: list[dict[str, Any]] = []
    offset = 0
    for _ in range(max_pages):
        rows = await fetch_page(offset, page_size) or []
        out.extend(rows)
        if len(rows) < page_size:
            break
        offset += page_size
    else:
        logger.warning("Export stopped after %d pages", max_pages)
    return out


def export_filename(exported_at: str) -> str:
    return "my-data-" + exported_at.replace(":", "-").replace(".", "-") + ".json"


class DataExporter:
    def __init__(self, ctx: AppContext):
        self.ctx = ctx

    def _pager(self, table: str, column: str, value: str):
        async def fetch(offset: int, limit: int) -> list[dict[str, Any]]:
            return await self.ctx.data.select(
                table, filters={column: value}, order="created_at", ascending=True, limit=limit, offset=offset
            )

        return fetch

    async def collect(self) -> dict[str, Any]:
        """Build the export document for the current user.

        Raises:
            AuthenticationRequired: When nobody is signed in
        """
        session = await self.ctx.auth.get_session()
        if session is None:
            raise AuthenticationRequired("You must be signed in to download your data.")
        user_id = session.user.id
        data = self.ctx.data

        profile = await data.select_one("profiles", filters={"id": user_id})
        settings = await data.select_one("settings", filters={"user_id": user_id})
        tasks = await fetch_all_pages(self._pager("tasks", "user_id", user_id))
        conversations = await fetch_all_pages(self._pager("conversations", "user_id", user_id))
        voice_commands = await fetch_all_pages(self._pager("voice_commands", "user_id", user_id))

        messages_by_conversation: dict[str, list[dict[str, Any]]] = {}
        for conversation in conversations:
            conversation_id = conversation.get("id")
            if not conversation_id:
                continue
            messages_by_conversation[conversation_id] = await fetch_all_pages(
                self._pager("messages", "conversation_id", conversation_id)
            )

        return {
            "exported_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "user": {"id": user_id, "email": session.user.email or None},
            "profile": profile,
            "settings": settings,
            "tasks": tasks,
            "conversations": conversations,
            "messages_by_conversation": messages_by_conversation,
            "voice_commands": voice_commands,
        }

    async def export(self, directory: Path | str = ".") -> Path:
        """Write the export document into `directory` and return its path."""
        payload = await self.collect()
        path = Path(directory) / export_filename(payload["exported_at"])
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        logger.info("Exported data to %s", path)
        return path
