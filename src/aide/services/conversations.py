"""The signed-in user's stored conversations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from aide.errors import AideError
from aide.services.context import AppContext

logger = logging.getLogger(__name__)


@dataclass
class Conversation:
    id: str
    title: str
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Conversation":
        return cls(
            id=row["id"],
            title=row.get("title") or "New conversation",
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class ConversationService:
    """List and delete conversations; failures become notices."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx

    async def list(self) -> list[Conversation]:
        """Conversations of the current user, most recently updated first."""
        session = await self.ctx.auth.get_session()
        if session is None:
            return []
        try:
            rows = await self.ctx.data.select(
                "conversations",
                filters={"user_id": session.user.id},
                order="updated_at",
                ascending=False,
            )
        except AideError as e:
            logger.warning("Listing conversations failed: %s", e)
            self.ctx.notices.error("Error", "Failed to load conversations.")
            return []
        return [Conversation.from_row(row) for row in rows]

    async def messages(self, conversation_id: str) -> list[dict[str, Any]]:
        """Messages of one conversation in creation order."""
        try:
            return await self.ctx.data.select(
                "messages",
                filters={"conversation_id": conversation_id},
                order="created_at",
                ascending=True,
            )
        except AideError as e:
            logger.warning("Loading messages of %s failed: %s", conversation_id, e)
            self.ctx.notices.error("Error", "Failed to load messages.")
            return []

    async def delete(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages (messages first)."""
        try:
            await self.ctx.data.delete("messages", filters={"conversation_id": conversation_id})
        except AideError as e:
            logger.warning("Deleting messages of %s failed: %s", conversation_id, e)
            self.ctx.notices.error("Error", "Failed to delete conversation messages.")
            return False
        try:
            await self.ctx.data.delete("conversations", filters={"id": conversation_id})
        except AideError as e:
            logger.warning("Deleting conversation %s failed: %s", conversation_id, e)
            self.ctx.notices.error("Error", "Failed to delete conversation.")
            return False
        self.ctx.notices.info("Conversation deleted")
        return True
