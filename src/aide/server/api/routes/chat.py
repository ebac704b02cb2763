"""Streamed chat completions with task extraction."""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from aide.client.stream_decoder import decode_stream
from aide.errors import AideError, NetworkOrServerError
from aide.server.api.schemas import ChatRequest
from aide.server.services import Caller, get_gateway, require_caller, user_data_client
from aide.util.task_blocks import extract_task

logger = logging.getLogger(__name__)

router = APIRouter()

SYSTEM_PROMPT = """You are a helpful and friendly virtual assistant. You can help with tasks, answer questions, provide information, and have conversations. Keep responses clear, concise, and helpful.

IMPORTANT: When a user asks you to create a task, reminder, or todo item, you MUST:
1. Create the task by including a special JSON block in your response
2. The block format is: [TASK_CREATED]{{"title": "task title", "description": "optional description", "dueDate": "optional ISO date"}}[/TASK_CREATED]
3. After the block, confirm to the user that you've created the task

Examples:
- "Create a task to buy groceries" → Include [TASK_CREATED]{{"title": "Buy groceries"}}[/TASK_CREATED] and say "I've created a task for you to buy groceries!"
- "Remind me to call mom tomorrow" → Include [TASK_CREATED]{{"title": "Call mom", "dueDate": "{tomorrow}"}}[/TASK_CREATED] and confirm
- "Add a task: finish report by Friday with notes about quarterly data" → Include [TASK_CREATED]{{"title": "Finish report", "description": "Notes about quarterly data", "dueDate": "...Friday's date..."}}[/TASK_CREATED]

For due dates, calculate the actual date based on the current date. Today is {today}.

The task creation block will be hidden from the user - they will only see your confirmation message."""


def build_system_prompt(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    tomorrow = (now + timedelta(days=1)).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return SYSTEM_PROMPT.format(today=now.date().isoformat(), tomorrow=tomorrow)


async def create_task_from_reply(raw: bytes, caller: Caller) -> None:
    """Insert the task announced in a finished reply, if there is one."""
    draft = extract_task(decode_stream([raw]))
    if draft is None:
        return
    logger.info("Creating task for user %s: %s", caller.user.id, draft.title)
    try:
        await user_data_client(caller.token).insert(
            "tasks",
            {
                "user_id": caller.user.id,
                "title": draft.title,
                "description": draft.description,
                "due_date": draft.due_date,
            },
        )
    except AideError as e:
        logger.error("Task insert failed for user %s: %s", caller.user.id, e)


@router.post("/chat")
async def chat(request: ChatRequest, caller: Caller = Depends(require_caller)) -> StreamingResponse:
    """Relay the completion stream for a conversation.

    The body is passed through unchanged; once it has been fully sent, a task
    block in the reply is stored for the caller.
    """
    messages = [{"role": "system", "content": build_system_prompt()}]
    messages += [m.model_dump() for m in request.messages]
    logger.info("Calling AI gateway with %d messages for user %s", len(request.messages), caller.user.id)

    try:
        upstream = await get_gateway().open_stream(messages)
    except NetworkOrServerError as e:
        if e.status_code == 429:
            raise HTTPException(status_code=429, detail="Rate limit exceeded. Please try again in a moment.")
        if e.status_code == 402:
            raise HTTPException(status_code=402, detail="Payment required. Please add credits to your workspace.")
        logger.error("Chat error: %s", e)
        raise HTTPException(status_code=500, detail="An unexpected error occurred. Please try again.")

    async def relay():
        received = bytearray()
        try:
            async for chunk in upstream.aiter_bytes():
                received.extend(chunk)
                yield chunk
        finally:
            await upstream.aclose()
        await create_task_from_reply(bytes(received), caller)

    return StreamingResponse(
        relay(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
