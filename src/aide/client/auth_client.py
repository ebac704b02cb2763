"""Async client for the hosted auth platform (GoTrue-style REST API)."""

from __future__ import annotations

import base64
import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from aide.errors import AuthenticationRequired, CredentialExchangeFailed, NetworkOrServerError
from aide.util.config import ClientConfig
from aide.util.config_manager import ConfigManager

logger = logging.getLogger(__name__)

# Sessions expiring within this many seconds are treated as expired.
EXPIRY_MARGIN_SECONDS = 10


class AuthEvent(str, Enum):
    """Auth state changes delivered to subscribers."""

    SIGNED_IN = "SIGNED_IN"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    SIGNED_OUT = "SIGNED_OUT"


@dataclass
class User:
    """Identity as reported by the auth platform."""

    id: str
    email: str | None
    user_metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            email=data.get("email"),
            user_metadata=data.get("user_metadata") or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "email": self.email, "user_metadata": self.user_metadata}


@dataclass
class Session:
    """A live session: credential pair plus the identity it belongs to."""

    access_token: str
    refresh_token: str
    expires_at: float | None
    user: User

    def is_expired(self, margin: float = EXPIRY_MARGIN_SECONDS) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= time.time() + margin

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> "Session":
        expires_at = data.get("expires_at")
        if expires_at is None and data.get("expires_in") is not None:
            expires_at = time.time() + float(data["expires_in"])
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=float(expires_at) if expires_at is not None else None,
            user=User.from_dict(data["user"]),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=data.get("expires_at"),
            user=User.from_dict(data["user"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "user": self.user.to_dict(),
        }


AuthListener = Callable[[AuthEvent, "Session | None"], "Awaitable[None] | None"]


class Subscription:
    """Handle returned by on_auth_state_change; call unsubscribe() on teardown."""

    def __init__(self, client: "AuthClient", listener: AuthListener):
        self._client = client
        self._listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._client._remove_listener(self._listener)
            self.active = False


def jwt_expiry(token: str) -> float | None:
    """Read the exp claim of a JWT without verifying it, or None if unreadable."""
    try:
        payload = token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload.encode()))
        exp = claims.get("exp")
        return float(exp) if exp is not None else None
    except (IndexError, ValueError, AttributeError):
        return None


class AuthClient:
    """Client for the auth platform.

    Holds the current session, persists it (encrypted) through the ConfigManager
    when one is given, and notifies subscribers of auth state changes.
    """

    def __init__(
        self,
        config: ClientConfig,
        storage: ConfigManager | None = None,
        http: httpx.AsyncClient | None = None,
        api_key: str | None = None,
    ):
        """Initialize the auth client.

        Args:
            config: Client configuration (backend URL, anon key)
            storage: Local state used to persist the session across processes
            http: Shared async HTTP client (created if omitted)
            api_key: Key sent as apikey header; defaults to the anon key
        """
        self.config = config
        self.base_url = config.auth_url
        self.api_key = api_key if api_key is not None else config.anon_key
        self._storage = storage
        self._http = http or httpx.AsyncClient(timeout=config.timeout)
        self._owns_http = http is None
        self._listeners: list[AuthListener] = []
        self._session: Session | None = None
        if storage is not None:
            cached = storage.load_auth_session()
            if cached:
                try:
                    self._session = Session.from_dict(cached)
                except (KeyError, TypeError) as e:
                    logger.warning("Ignoring malformed cached session: %s", e)

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {"apikey": self.api_key, "Content-Type": "application/json"}
        headers["Authorization"] = f"Bearer {access_token or self.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return its JSON body.

        Raises:
            CredentialExchangeFailed: On 400/401/403/422 responses
            NetworkOrServerError: On transport failures and other non-2xx responses
        """
        try:
            resp = await self._http.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(access_token),
                params=params,
                json=json_body,
            )
        except httpx.HTTPError as e:
            raise NetworkOrServerError(f"Auth request failed: {e}") from e

        if resp.status_code in (400, 401, 403, 422):
            raise CredentialExchangeFailed(_error_message(resp), status_code=resp.status_code)
        if resp.status_code >= 300:
            raise NetworkOrServerError(_error_message(resp), status_code=resp.status_code)
        if not resp.content:
            return {}
        return resp.json()

    # Subscriptions
    def on_auth_state_change(self, listener: AuthListener) -> Subscription:
        """Register a listener for auth events; returns its subscription handle."""
        self._listeners.append(listener)
        return Subscription(self, listener)

    def _remove_listener(self, listener: AuthListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, event: AuthEvent, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Auth listener failed on %s", event.value, exc_info=True)

    async def _set_session(self, session: Session | None, event: AuthEvent) -> None:
        self._session = session
        if self._storage is not None:
            self._storage.save_auth_session(session.to_dict() if session else None)
        await self._notify(event, session)

    # Session operations
    @property
    def current_session(self) -> Session | None:
        """The held session without any refresh attempt."""
        return self._session

    async def get_session(self) -> Session | None:
        """Return the current session, refreshing it first if it has expired.

        A failed refresh clears the session and returns None.
        """
        session = self._session
        if session is None or not session.is_expired():
            return session
        try:
            return await self.refresh_session(session.refresh_token)
        except (CredentialExchangeFailed, NetworkOrServerError) as e:
            logger.info("Expired session could not be refreshed: %s", e)
            await self._set_session(None, AuthEvent.SIGNED_OUT)
            return None

    async def require_session(self) -> Session:
        """Return a live session or raise AuthenticationRequired."""
        session = await self.get_session()
        if session is None:
            raise AuthenticationRequired("Not signed in")
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        data = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json_body={"email": email, "password": password},
        )
        session = Session.from_token_response(data)
        await self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    async def sign_up(self, email: str, password: str, username: str | None = None) -> Session | None:
        """Create an identity.

        Returns:
            The new session, or None when the platform requires e-mail confirmation first
        """
        data = await self._request(
            "POST",
            "/signup",
            json_body={
                "email": email,
                "password": password,
                "data": {"username": username or email.split("@")[0]},
            },
        )
        if "access_token" not in data:
            return None
        session = Session.from_token_response(data)
        await self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    async def get_user(self, access_token: str | None = None) -> User:
        """Resolve the identity behind an access token (the current one by default)."""
        token = access_token or (self._session.access_token if self._session else None)
        if not token:
            raise AuthenticationRequired("No access token")
        data = await self._request("GET", "/user", access_token=token)
        return User.from_dict(data)

    async def set_session(self, access_token: str, refresh_token: str) -> Session:
        """Establish a session from a stored credential pair.

        An access token that is still valid is checked against /user; an expired
        one is exchanged through the refresh token instead.
        """
        expires_at = jwt_expiry(access_token)
        if expires_at is not None and expires_at <= time.time() + EXPIRY_MARGIN_SECONDS:
            return await self.refresh_session(refresh_token)

        user = await self.get_user(access_token)
        session = Session(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            user=user,
        )
        await self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    async def refresh_session(self, refresh_token: str) -> Session:
        data = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json_body={"refresh_token": refresh_token},
        )
        session = Session.from_token_response(data)
        await self._set_session(session, AuthEvent.TOKEN_REFRESHED)
        return session

    async def update_user(self, data: dict[str, Any]) -> User:
        session = await self.require_session()
        body = await self._request("PUT", "/user", access_token=session.access_token, json_body={"data": data})
        user = User.from_dict(body)
        session.user = user
        await self._set_session(session, AuthEvent.USER_UPDATED)
        return user

    async def sign_out(self) -> None:
        """Invalidate the live session remotely and forget it locally.

        The local session is cleared even when the remote call fails.
        """
        session = self._session
        if session is not None:
            try:
                await self._request("POST", "/logout", access_token=session.access_token)
            except (CredentialExchangeFailed, NetworkOrServerError) as e:
                logger.warning("Remote sign-out failed, clearing local session anyway: %s", e)
        await self._set_session(None, AuthEvent.SIGNED_OUT)

    async def forget_session(self) -> None:
        """Drop the local session without contacting the platform."""
        await self._set_session(None, AuthEvent.SIGNED_OUT)

    # Admin (service-role key only)
    async def admin_delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/admin/users/{user_id}")


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        for key in ("error_description", "msg", "message", "error"):
            if data.get(key):
                return str(data[key])
    return f"HTTP {resp.status_code}"
