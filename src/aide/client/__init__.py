"""HTTP clients for the hosted platform and the functions server."""

from aide.client.auth_client import AuthClient, AuthEvent, Session, Subscription, User
from aide.client.data_client import DataClient
from aide.client.functions_client import FunctionsClient
from aide.client.stream_decoder import ChatStreamDecoder, decode_stream, extract_delta

__all__ = [
    "AuthClient",
    "AuthEvent",
    "Session",
    "Subscription",
    "User",
    "DataClient",
    "FunctionsClient",
    "ChatStreamDecoder",
    "decode_stream",
    "extract_delta",
]
