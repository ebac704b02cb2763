"""Tests for the auth client against the fake platform."""

import base64
import json
import time

import httpx
import pytest

from aide.client.auth_client import AuthClient, AuthEvent, Session, User, jwt_expiry
from aide.errors import AuthenticationRequired, CredentialExchangeFailed, NetworkOrServerError
from aide.util.config_manager import ConfigManager

from conftest import sign_in


def make_jwt(exp: float) -> str:
    def part(data):
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")

    return f"{part({'alg': 'HS256'})}.{part({'exp': exp})}.sig"


class TestJwtExpiry:
    def test_reads_exp_claim(self):
        assert jwt_expiry(make_jwt(1234)) == 1234

    def test_opaque_token(self):
        assert jwt_expiry("not-a-jwt") is None


class TestSession:
    def test_expires_in_is_converted(self):
        session = Session.from_token_response(
            {"access_token": "a", "refresh_token": "r", "expires_in": 60, "user": {"id": "u", "email": "e"}}
        )
        assert session.expires_at == pytest.approx(time.time() + 60, abs=5)
        assert not session.is_expired()

    def test_roundtrip_dict(self):
        session = Session("a", "r", 10.0, User("u", "e@x", {"username": "e"}))
        assert Session.from_dict(session.to_dict()) == session


class TestAuthClient:
    """Sign-in, session restore and auth events."""

    @pytest.mark.asyncio
    async def test_sign_in_emits_event_and_persists(self, ctx, backend):
        events = []
        ctx.auth.on_auth_state_change(lambda event, session: events.append(event))
        session = await sign_in(ctx, backend)
        assert session.user.email == "ada@example.com"
        assert events == [AuthEvent.SIGNED_IN]
        assert ctx.state.load_auth_session()["access_token"] == session.access_token

    @pytest.mark.asyncio
    async def test_wrong_password(self, ctx, backend):
        backend.add_user("ada@example.com", "secret")
        with pytest.raises(CredentialExchangeFailed) as exc:
            await ctx.auth.sign_in_with_password("ada@example.com", "nope")
        assert "Invalid login credentials" in str(exc.value)
        assert ctx.auth.current_session is None

    @pytest.mark.asyncio
    async def test_session_restored_by_new_client(self, ctx, backend, client_config):
        session = await sign_in(ctx, backend)
        other = AuthClient(client_config, storage=ConfigManager(client_config.config_path), http=ctx.http)
        assert other.current_session.access_token == session.access_token

    @pytest.mark.asyncio
    async def test_expired_session_is_refreshed(self, ctx, backend):
        session = await sign_in(ctx, backend)
        session.expires_at = time.time() - 1
        events = []
        ctx.auth.on_auth_state_change(lambda event, s: events.append(event))
        refreshed = await ctx.auth.get_session()
        assert refreshed.access_token != session.access_token
        assert events == [AuthEvent.TOKEN_REFRESHED]

    @pytest.mark.asyncio
    async def test_failed_refresh_signs_out(self, ctx, backend):
        session = await sign_in(ctx, backend)
        session.expires_at = time.time() - 1
        backend.revoke_refresh(session.refresh_token)
        assert await ctx.auth.get_session() is None
        with pytest.raises(AuthenticationRequired):
            await ctx.auth.require_session()

    @pytest.mark.asyncio
    async def test_set_session_with_valid_access_token(self, ctx, backend):
        user = backend.add_user("bob@example.com")
        issued = backend.issue_session(user)
        session = await ctx.auth.set_session(issued["access_token"], issued["refresh_token"])
        assert session.user.id == user["id"]
        assert session.refresh_token == issued["refresh_token"]

    @pytest.mark.asyncio
    async def test_set_session_with_expired_jwt_uses_refresh(self, ctx, backend):
        user = backend.add_user("bob@example.com")
        issued = backend.issue_session(user)
        session = await ctx.auth.set_session(make_jwt(time.time() - 100), issued["refresh_token"])
        assert session.user.id == user["id"]
        assert issued["refresh_token"] not in backend.refresh_tokens

    @pytest.mark.asyncio
    async def test_sign_up_with_confirmation(self, ctx, backend):
        backend.confirm_email = True
        assert await ctx.auth.sign_up("new@example.com", "pw", "newbie") is None
        assert backend.user_by_email("new@example.com")["user_metadata"]["username"] == "newbie"

    @pytest.mark.asyncio
    async def test_sign_out_clears_even_when_remote_fails(self, ctx, backend, client_config):
        await sign_in(ctx, backend)

        def failing(request):
            return httpx.Response(500, json={"msg": "down"})

        ctx.auth._http = httpx.AsyncClient(transport=httpx.MockTransport(failing))
        events = []
        ctx.auth.on_auth_state_change(lambda event, s: events.append(event))
        await ctx.auth.sign_out()
        assert ctx.auth.current_session is None
        assert events == [AuthEvent.SIGNED_OUT]
        assert ctx.state.load_auth_session() is None

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_break_sign_in(self, ctx, backend):
        def broken(event, session):
            raise RuntimeError("boom")

        ctx.auth.on_auth_state_change(broken)
        assert await sign_in(ctx, backend) is not None

    @pytest.mark.asyncio
    async def test_unsubscribe(self, ctx, backend):
        events = []
        subscription = ctx.auth.on_auth_state_change(lambda event, s: events.append(event))
        subscription.unsubscribe()
        subscription.unsubscribe()
        await sign_in(ctx, backend)
        assert events == []

    @pytest.mark.asyncio
    async def test_transport_error_is_network_error(self, client_config):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        auth = AuthClient(client_config, http=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
        with pytest.raises(NetworkOrServerError):
            await auth.sign_in_with_password("a@x", "pw")
