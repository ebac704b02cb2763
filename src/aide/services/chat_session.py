"""One conversation with the assistant: optimistic send, persistence and streamed replies."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Literal

from aide.client.stream_decoder import ChatStreamDecoder
from aide.errors import AideError, NetworkOrServerError, PaymentRequired, RateLimited
from aide.services.context import AppContext
from aide.util.task_blocks import TaskDraft, extract_tasks, strip_task_blocks

logger = logging.getLogger(__name__)

PLACEHOLDER_TITLE_LENGTH = 50

Role = Literal["user", "assistant"]


class ChatState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    ERROR = "error"


@dataclass
class ChatMessage:
    """One side of a turn. Assistant content changes only while it streams."""

    role: Role
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def placeholder_title(text: str) -> str:
    """Title used until a generated one replaces it, and when generation fails."""
    if len(text) > PLACEHOLDER_TITLE_LENGTH:
        return text[:PLACEHOLDER_TITLE_LENGTH] + "..."
    return text


class ChatSession:
    """Owner of the in-memory message list of the displayed conversation.

    State machine: IDLE -> SENDING -> STREAMING -> IDLE, or ERROR with a notice.
    A send is refused while SENDING or STREAMING.
    """

    def __init__(
        self,
        ctx: AppContext,
        conversation_id: str | None = None,
        on_update: Callable[[ChatMessage], None] | None = None,
        on_task_created: Callable[[TaskDraft], None] | None = None,
    ):
        """Initialize the chat session.

        Args:
            ctx: Application context
            conversation_id: Existing conversation to continue, None for a new one
            on_update: Called with each appended or changed message
            on_task_created: Called for each task block the assistant emits
        """
        self.ctx = ctx
        self.conversation_id = conversation_id
        self.messages: list[ChatMessage] = []
        self.state = ChatState.IDLE
        self._on_update = on_update
        self._on_task_created = on_task_created
        self._background: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self.state in (ChatState.SENDING, ChatState.STREAMING)

    def _emit(self, message: ChatMessage) -> None:
        if self._on_update is not None:
            self._on_update(message)

    # Conversation selection
    def new_conversation(self) -> None:
        """Start an empty conversation; its id is minted on the first send."""
        self.conversation_id = None
        self.messages = []
        if not self.busy:
            self.state = ChatState.IDLE

    async def load_conversation(self, conversation_id: str) -> list[ChatMessage]:
        """Replace the displayed messages with a stored conversation's."""
        try:
            rows = await self.ctx.data.select(
                "messages",
                columns="role,content",
                filters={"conversation_id": conversation_id},
                order="created_at",
                ascending=True,
            )
        except AideError as e:
            logger.warning("Loading conversation %s failed: %s", conversation_id, e)
            self.ctx.notices.error("Error", "Failed to load conversation.")
            return self.messages
        self.conversation_id = conversation_id
        self.messages = [
            ChatMessage(role=row["role"], content=row.get("content") or "")
            for row in rows
            if row.get("role") in ("user", "assistant")
        ]
        return self.messages

    # Sending
    async def send(self, user_text: str) -> ChatMessage | None:
        """Send a user message and stream the assistant's answer.

        Returns:
            The assistant message of this turn, or None if none was produced
        """
        text = user_text.strip()
        if not text:
            return None
        if self.busy:
            logger.info("Send ignored: a reply is still in progress")
            return None

        session = await self.ctx.auth.get_session()
        if session is None:
            self.ctx.notices.error("Not signed in", "Sign in to chat with your assistant.")
            return None

        self.state = ChatState.SENDING
        messages = self.messages
        user_message = ChatMessage(role="user", content=text)
        messages.append(user_message)
        self._emit(user_message)

        try:
            conversation_id, created = await self._persist_user_message(session.user.id, text)
        except (AideError, KeyError, IndexError) as e:
            logger.warning("Persisting user message failed: %s", e)
            self.ctx.notices.error("Error", "Failed to save your message.")
            self.state = ChatState.ERROR
            return None

        if created:
            self._spawn_title(text, conversation_id, session.access_token)

        history = [m.to_payload() for m in messages]
        return await self._stream_reply(messages, history, conversation_id, session.access_token)

    async def _persist_user_message(self, user_id: str, text: str) -> tuple[str, bool]:
        conversation_id = self.conversation_id
        created = False
        if conversation_id is None:
            rows = await self.ctx.data.insert(
                "conversations", {"user_id": user_id, "title": placeholder_title(text)}
            )
            if not rows:
                raise NetworkOrServerError("Conversation insert returned no row")
            conversation_id = rows[0]["id"]
            self.conversation_id = conversation_id
            created = True
        await self.ctx.data.insert(
            "messages", {"conversation_id": conversation_id, "role": "user", "content": text}
        )
        return conversation_id, created

    async def _stream_reply(
        self,
        messages: list[ChatMessage],
        history: list[dict[str, str]],
        conversation_id: str,
        access_token: str,
    ) -> ChatMessage | None:
        """Read the completion stream into one assistant message.

        `messages` and `conversation_id` are the ones captured at send time, so a
        conversation switch during the stream cannot redirect this reply.
        """
        self.state = ChatState.STREAMING
        decoder = ChatStreamDecoder()
        raw = ""
        assistant: ChatMessage | None = None
        announced = 0

        try:
            async with aclosing(self.ctx.functions.stream_chat(history, access_token)) as stream:
                async for chunk in stream:
                    for delta in decoder.feed_bytes(chunk):
                        raw += delta
                        assistant = self._show(messages, assistant, strip_task_blocks(raw, final=False))
                    announced = self._announce_tasks(raw, announced)
                    if decoder.done:
                        break
            for delta in decoder.close():
                raw += delta
        except RateLimited:
            self.ctx.notices.error("Rate limit exceeded", "Please try again in a moment.")
            self.state = ChatState.IDLE
            return assistant
        except PaymentRequired:
            self.ctx.notices.error("Payment required", "Please add credits to continue.")
            self.state = ChatState.IDLE
            return assistant
        except AideError as e:
            logger.warning("Chat stream failed: %s", e)
            self.ctx.notices.error("Error", "Failed to get response from assistant.")
            self.state = ChatState.ERROR
            return assistant

        if not raw:
            self.state = ChatState.IDLE
            return None

        announced = self._announce_tasks(raw, announced)
        content = strip_task_blocks(raw, final=True)
        assistant = self._show(messages, assistant, content, force=True)

        try:
            await self.ctx.data.insert(
                "messages", {"conversation_id": conversation_id, "role": "assistant", "content": content}
            )
        except AideError as e:
            logger.warning("Persisting assistant message failed: %s", e)
            self.ctx.notices.error("Error", "Failed to save the assistant's reply.")
            self.state = ChatState.ERROR
            return assistant

        if messages is not self.messages:
            self.ctx.notices.info("Reply saved", "An answer finished in a conversation you left.")
        self.state = ChatState.IDLE
        return assistant

    def _show(
        self,
        messages: list[ChatMessage],
        assistant: ChatMessage | None,
        content: str,
        force: bool = False,
    ) -> ChatMessage | None:
        """Update the turn's assistant message in place, appending it on first content."""
        if assistant is None:
            if not content and not force:
                return None
            last = messages[-1] if messages else None
            if last is not None and last.role == "assistant":
                assistant = last
            else:
                assistant = ChatMessage(role="assistant", content="")
                messages.append(assistant)
        if assistant.content != content or force:
            assistant.content = content
            self._emit(assistant)
        return assistant

    def _announce_tasks(self, raw: str, announced: int) -> int:
        drafts = extract_tasks(raw)
        for draft in drafts[announced:]:
            self.ctx.notices.info("Task created", draft.title)
            if self._on_task_created is not None:
                self._on_task_created(draft)
        return max(announced, len(drafts))

    # Title generation
    def _spawn_title(self, first_message: str, conversation_id: str, access_token: str) -> None:
        task = asyncio.create_task(self._generate_title(first_message, conversation_id, access_token))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _generate_title(self, first_message: str, conversation_id: str, access_token: str) -> None:
        try:
            title = await self.ctx.functions.generate_title(first_message, conversation_id, access_token)
            logger.debug("Conversation %s titled %r", conversation_id, title)
        except AideError as e:
            logger.warning("Title generation for %s failed: %s", conversation_id, e)

    async def wait_for_background(self) -> None:
        """Wait for fire-and-forget work (title generation) to settle."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
