"""Pydantic schemas for the functions API."""

from .chat import ChatMessageIn, ChatRequest, TitleRequest, TitleResponse
from .health import DeleteAccountResponse, HealthResponse, StatusResponse

__all__ = [
    "ChatMessageIn",
    "ChatRequest",
    "TitleRequest",
    "TitleResponse",
    "DeleteAccountResponse",
    "HealthResponse",
    "StatusResponse",
]
