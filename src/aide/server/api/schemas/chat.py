"""Chat and title Pydantic schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MAX_MESSAGES = 100
MAX_CONTENT_LENGTH = 10000


class ChatMessageIn(BaseModel):
    """One message of the conversation history sent for completion."""

    role: Literal["user", "assistant", "system"] = Field(description="Author of the message")
    content: str = Field(max_length=MAX_CONTENT_LENGTH, description="Message text")


class ChatRequest(BaseModel):
    """Request model for a streamed chat completion."""

    messages: list[ChatMessageIn] = Field(
        min_length=1, max_length=MAX_MESSAGES, description="Conversation history, oldest first"
    )


class TitleRequest(BaseModel):
    """Request model for naming a conversation."""

    model_config = ConfigDict(populate_by_name=True)

    first_message: str = Field(alias="firstMessage", min_length=1, description="First user message")
    conversation_id: str = Field(alias="conversationId", min_length=1, description="Conversation to title")


class TitleResponse(BaseModel):
    title: str = Field(description="Generated or fallback title")
