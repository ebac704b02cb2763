"""Caller authentication and clients for the auth and data APIs."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Header, HTTPException

from aide.client.auth_client import AuthClient, User
from aide.client.data_client import DataClient
from aide.errors import AuthenticationRequired, CredentialExchangeFailed, NetworkOrServerError
from aide.server.state import get_http_client, get_server_config

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass
class Caller:
    """The authenticated identity behind a request and the token it presented."""

    user: User
    token: str


def user_data_client(token: str) -> DataClient:
    """Data client acting as the caller, so row-level policies apply."""
    return DataClient(get_server_config().client_config, token_provider=lambda: token, http=get_http_client())


def admin_data_client() -> DataClient:
    config = get_server_config()
    return DataClient(config.client_config, http=get_http_client(), api_key=config.service_role_key)


def admin_auth_client() -> AuthClient:
    config = get_server_config()
    return AuthClient(config.client_config, http=get_http_client(), api_key=config.service_role_key)


async def require_caller(authorization: str | None = Header(default=None)) -> Caller:
    """FastAPI dependency resolving the bearer token to a user."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")
    token = authorization[len(BEARER_PREFIX):].strip()

    auth = AuthClient(get_server_config().client_config, http=get_http_client())
    try:
        user = await auth.get_user(token)
    except (AuthenticationRequired, CredentialExchangeFailed) as e:
        logger.info("Rejected bearer token: %s", e)
        raise HTTPException(status_code=401, detail="Unauthorized - Invalid token")
    except NetworkOrServerError as e:
        logger.error("Auth verification failed: %s", e)
        raise HTTPException(status_code=500, detail="An unexpected error occurred. Please try again.")
    return Caller(user=user, token=token)
