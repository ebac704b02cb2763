"""Account deletion."""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException

from aide.errors import AideError
from aide.server.api.schemas import DeleteAccountResponse
from aide.server.services import Caller, admin_auth_client, admin_data_client, require_caller
from aide.server.state import get_server_config

logger = logging.getLogger(__name__)

router = APIRouter()

# (table, owner column) removed after the caller's messages
OWNED_TABLES = [
    ("conversations", "user_id"),
    ("tasks", "user_id"),
    ("voice_commands", "user_id"),
    ("settings", "user_id"),
    ("profiles", "id"),
]


@router.post("/delete-account", response_model=DeleteAccountResponse)
async def delete_account(caller: Caller = Depends(require_caller)) -> DeleteAccountResponse:
    """Delete every row the caller owns, then the identity itself.

    Row cleanup is best effort; only a failed identity deletion fails the call.
    """
    if not get_server_config().service_role_key:
        logger.error("Missing AIDE_SERVICE_ROLE_KEY")
        raise HTTPException(status_code=500, detail="Server misconfiguration")

    admin = admin_data_client()
    user_id = caller.user.id

    try:
        conversations = await admin.select("conversations", columns="id", filters={"user_id": user_id})
    except AideError as e:
        logger.error("Failed to list conversations: %s", e)
        conversations = []

    conversation_ids = [c["id"] for c in conversations if c.get("id")]
    if conversation_ids:
        try:
            await admin.delete("messages", filters={"conversation_id": conversation_ids})
        except AideError as e:
            logger.error("Failed to delete messages: %s", e)

    results = await asyncio.gather(
        *(admin.delete(table, filters={column: user_id}) for table, column in OWNED_TABLES),
        return_exceptions=True,
    )
    for (table, _), result in zip(OWNED_TABLES, results):
        if isinstance(result, BaseException):
            logger.error("Cleanup delete failed (%s): %s", table, result)

    try:
        await admin_auth_client().admin_delete_user(user_id)
    except AideError as e:
        logger.error("Failed to delete user %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Failed to delete account")

    logger.info("Deleted account %s", user_id)
    return DeleteAccountResponse(ok=True)
