"""Tests for stored conversations."""

import pytest

from aide.services.conversations import Conversation, ConversationService

from conftest import sign_in


class TestConversationService:
    @pytest.mark.asyncio
    async def test_list_newest_first(self, ctx, backend):
        session = await sign_in(ctx, backend)
        uid = session.user.id
        backend.rows("conversations").extend(
            [
                {"id": "c1", "user_id": uid, "title": "Old", "updated_at": "2026-10-01T00:00:00Z"},
                {"id": "c2", "user_id": uid, "title": None, "updated_at": "2026-10-02T00:00:00Z"},
                {"id": "c3", "user_id": "other", "title": "Not mine", "updated_at": "2026-10-03T00:00:00Z"},
            ]
        )

        conversations = await ConversationService(ctx).list()

        assert [c.id for c in conversations] == ["c2", "c1"]
        assert conversations[0].title == "New conversation"

    @pytest.mark.asyncio
    async def test_signed_out_lists_nothing(self, ctx, backend):
        assert await ConversationService(ctx).list() == []
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_delete_removes_messages_first(self, ctx, backend):
        session = await sign_in(ctx, backend)
        backend.rows("conversations").append({"id": "c1", "user_id": session.user.id})
        backend.rows("messages").extend(
            [{"id": "m1", "conversation_id": "c1"}, {"id": "m2", "conversation_id": "c9"}]
        )
        before = len(backend.requests)

        assert await ConversationService(ctx).delete("c1")

        deletes = [path for method, path in backend.requests[before:] if method == "DELETE"]
        assert deletes == ["/rest/v1/messages", "/rest/v1/conversations"]
        assert [m["id"] for m in backend.rows("messages")] == ["m2"]
        assert backend.rows("conversations") == []
        assert ctx.notices.last.title == "Conversation deleted"

    @pytest.mark.asyncio
    async def test_failed_message_delete_keeps_conversation(self, ctx, backend):
        session = await sign_in(ctx, backend)
        backend.rows("conversations").append({"id": "c1", "user_id": session.user.id})
        backend.fail_tables.add("messages")

        assert not await ConversationService(ctx).delete("c1")
        assert len(backend.rows("conversations")) == 1
        assert ctx.notices.last.level == "error"

    def test_from_row(self):
        assert Conversation.from_row({"id": "c1", "title": "Trip"}).title == "Trip"
