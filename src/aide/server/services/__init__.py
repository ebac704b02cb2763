"""Services layer for the functions server."""

from .backend import Caller, admin_auth_client, admin_data_client, require_caller, user_data_client
from .gateway import GatewayClient, get_gateway

__all__ = [
    # Callers and backend clients
    "Caller",
    "require_caller",
    "user_data_client",
    "admin_data_client",
    "admin_auth_client",
    # Gateway
    "GatewayClient",
    "get_gateway",
]
