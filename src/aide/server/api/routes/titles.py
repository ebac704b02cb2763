"""Conversation title generation."""

import logging

from fastapi import APIRouter, Depends

from aide.errors import AideError, NetworkOrServerError
from aide.server.api.schemas import TitleRequest, TitleResponse
from aide.server.services import Caller, get_gateway, require_caller, user_data_client
from aide.server.state import get_server_config
from aide.services.chat_session import placeholder_title

logger = logging.getLogger(__name__)

router = APIRouter()

TITLE_PROMPT = (
    "Generate a very short, concise title (3-6 words max) for a conversation based on the "
    "user's first message. Return ONLY the title, no quotes, no explanation. The title should "
    "capture the main topic or intent."
)


@router.post("/generate-title", response_model=TitleResponse)
async def generate_title(request: TitleRequest, caller: Caller = Depends(require_caller)) -> TitleResponse:
    """Name a conversation after its first message and store the name.

    When the gateway fails the truncated message is returned and nothing is stored.
    """
    fallback = placeholder_title(request.first_message)
    try:
        generated = await get_gateway().complete(
            [
                {"role": "system", "content": TITLE_PROMPT},
                {"role": "user", "content": request.first_message},
            ],
            model=get_server_config().title_model,
        )
    except NetworkOrServerError as e:
        logger.error("AI gateway error: %s", e)
        return TitleResponse(title=fallback)

    title = (generated or "").strip() or fallback
    try:
        await user_data_client(caller.token).update(
            "conversations", {"title": title}, filters={"id": request.conversation_id}
        )
    except AideError as e:
        logger.error("Failed to update conversation title: %s", e)
    return TitleResponse(title=title)
