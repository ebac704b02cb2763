"""Recently used accounts on this device and switching between them.

The registry keeps at most MAX_ACCOUNTS records keyed by e-mail. A record may
carry the credential pair of its last live session, which lets switch_to()
re-establish that session without asking for a password. Records written by
older releases (the legacy store) are upgraded on first load; they carry no
identity key and no credentials, so switching to them always goes through an
interactive sign-in once.
"""

from __future__ import annotations

import inspect
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from aide.client.auth_client import AuthEvent, Session, Subscription
from aide.errors import AideError, StorageParseError
from aide.services.context import AppContext
from aide.util.config_manager import ACCOUNTS_KEY, LEGACY_ACCOUNTS_KEY

logger = logging.getLogger(__name__)

MAX_ACCOUNTS = 5

_RECORDED_EVENTS = (AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED, AuthEvent.USER_UPDATED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp; unreadable values sort as oldest."""
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return datetime.min.replace(tzinfo=timezone.utc)


def default_display_name(email: str) -> str:
    return email.split("@")[0] or email


@dataclass
class CredentialPair:
    """Tokens able to re-establish a session without a password."""

    access_token: str
    refresh_token: str
    expires_at: float | None = None


@dataclass
class StoredAccount:
    """One known identity on this device."""

    user_id: str
    email: str
    display_name: str
    last_used_at: datetime = field(default_factory=_now)
    credentials: CredentialPair | None = None

    @property
    def can_quick_switch(self) -> bool:
        """True when a stable identity key and a refresh token are both on record."""
        return bool(self.user_id and self.credentials and self.credentials.refresh_token)


class SwitchState(str, Enum):
    ACTIVE = "active"
    AWAITING_PASSWORD = "awaiting_password"


@dataclass
class SwitchResult:
    """Outcome of one switch attempt."""

    state: SwitchState
    account: StoredAccount
    changed: bool = False
    error: str | None = None


def _same_email(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


class AccountRegistry:
    """Owner of the persisted recent-accounts list."""

    def __init__(self, ctx: AppContext, on_reload: Callable[[], Awaitable[None] | None] | None = None):
        """Initialize the registry.

        Args:
            ctx: Application context (local state, auth and data collaborators)
            on_reload: Called after a successful switch so identity-scoped state is reloaded
        """
        self.ctx = ctx
        self._on_reload = on_reload
        self._accounts: list[StoredAccount] = []
        self._subscription: Subscription | None = None
        self._quiet = False

    # Persistence
    def _encode(self, account: StoredAccount) -> dict[str, Any]:
        data: dict[str, Any] = {
            "user_id": account.user_id,
            "email": account.email,
            "display_name": account.display_name,
            "last_used_at": account.last_used_at.isoformat(),
        }
        if account.credentials is not None:
            creds = {
                "access_token": account.credentials.access_token,
                "refresh_token": account.credentials.refresh_token,
                "expires_at": account.credentials.expires_at,
            }
            data["credentials"] = self.ctx.state.encrypt_value(json.dumps(creds))
        return data

    def _decode(self, raw: Any) -> StoredAccount:
        if not isinstance(raw, dict) or not raw.get("email"):
            raise StorageParseError(f"Malformed account record: {raw!r:.80}")
        credentials = None
        if raw.get("credentials") and not isinstance(raw["credentials"], str):
            logger.warning("Dropping credentials for %s: stored value is not encrypted", raw["email"])
        elif raw.get("credentials"):
            try:
                creds = json.loads(self.ctx.state.decrypt_value(raw["credentials"]))
                credentials = CredentialPair(
                    access_token=creds["access_token"],
                    refresh_token=creds["refresh_token"],
                    expires_at=creds.get("expires_at"),
                )
            except (StorageParseError, json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning("Dropping unreadable credentials for %s: %s", raw["email"], e)
        email = str(raw["email"])
        return StoredAccount(
            user_id=str(raw.get("user_id") or ""),
            email=email,
            display_name=str(raw.get("display_name") or default_display_name(email)),
            last_used_at=_parse_timestamp(raw.get("last_used_at")),
            credentials=credentials,
        )

    @staticmethod
    def _upgrade_legacy(raw: Any) -> StoredAccount:
        """Convert an {email, username, lastUsed, hasSession} record."""
        if not isinstance(raw, dict) or not raw.get("email"):
            raise StorageParseError(f"Malformed legacy account record: {raw!r:.80}")
        email = str(raw["email"])
        return StoredAccount(
            user_id="",
            email=email,
            display_name=str(raw.get("username") or default_display_name(email)),
            last_used_at=_parse_timestamp(raw.get("lastUsed")),
            credentials=None,
        )

    def _persist(self) -> None:
        self.ctx.state.set_value(ACCOUNTS_KEY, [self._encode(a) for a in self._accounts])

    def _read_store(self, key: str, convert: Callable[[Any], StoredAccount]) -> list[StoredAccount]:
        try:
            raw_list = self.ctx.state.get_json_list(key)
        except StorageParseError as e:
            logger.warning("Ignoring unreadable %s store: %s", key, e)
            return []
        accounts: list[StoredAccount] = []
        for raw in raw_list:
            try:
                accounts.append(convert(raw))
            except StorageParseError as e:
                logger.warning("Skipping account entry: %s", e)
        return accounts

    def load(self) -> list[StoredAccount]:
        """Read the persisted accounts, upgrading the legacy store when needed.

        Never raises: unreadable stores yield an empty list.
        """
        accounts = self._read_store(ACCOUNTS_KEY, self._decode)
        if not accounts:
            legacy = self._read_store(LEGACY_ACCOUNTS_KEY, self._upgrade_legacy)
            if legacy:
                logger.info("Upgraded %d legacy account record(s)", len(legacy))
                accounts = legacy
                self._accounts = sorted(accounts, key=lambda a: a.last_used_at, reverse=True)[:MAX_ACCOUNTS]
                self._persist()
                return list(self._accounts)

        self._accounts = accounts[:MAX_ACCOUNTS]
        return self.accounts

    # Views
    @property
    def accounts(self) -> list[StoredAccount]:
        """All records, most recently used first."""
        return sorted(self._accounts, key=lambda a: a.last_used_at, reverse=True)

    @property
    def stored_order(self) -> list[StoredAccount]:
        """Records in persisted order (most recently upserted first)."""
        return list(self._accounts)

    def find(self, email: str) -> StoredAccount | None:
        for account in self._accounts:
            if _same_email(account.email, email):
                return account
        return None

    def current_account(self) -> StoredAccount | None:
        session = self.ctx.auth.current_session
        if session is None or not session.user.email:
            return None
        return self.find(session.user.email)

    def other_accounts(self) -> list[StoredAccount]:
        """Recent accounts without the signed-in identity, most recent first."""
        session = self.ctx.auth.current_session
        current_email = session.user.email if session else None
        return [a for a in self.accounts if not (current_email and _same_email(a.email, current_email))]

    # Mutation
    def upsert(self, account: StoredAccount) -> list[StoredAccount]:
        """Merge a record by e-mail, move it to the front and keep the newest MAX_ACCOUNTS."""
        remaining = [a for a in self._accounts if not _same_email(a.email, account.email)]
        self._accounts = [account] + remaining
        del self._accounts[MAX_ACCOUNTS:]
        self._persist()
        return self.stored_order

    def _clear_credentials(self, email: str) -> None:
        account = self.find(email)
        if account is None or account.credentials is None:
            return
        index = self._accounts.index(account)
        self._accounts[index] = replace(account, credentials=None)
        self._persist()

    async def _resolve_display_name(self, session: Session) -> str:
        email = session.user.email or ""
        try:
            profile = await self.ctx.data.select_one("profiles", filters={"id": session.user.id}, columns="username")
        except AideError as e:
            logger.info("Profile lookup failed for %s: %s", email, e)
            profile = None
        if profile and profile.get("username"):
            return profile["username"]
        return session.user.user_metadata.get("username") or default_display_name(email)

    async def record_session(self, session: Session) -> StoredAccount | None:
        """Store the identity and credential pair of a live session as most recent."""
        if not session.user.email:
            logger.info("Session for %s has no e-mail; not recorded", session.user.id)
            return None
        account = StoredAccount(
            user_id=session.user.id,
            email=session.user.email,
            display_name=await self._resolve_display_name(session),
            last_used_at=_now(),
            credentials=CredentialPair(
                access_token=session.access_token,
                refresh_token=session.refresh_token,
                expires_at=session.expires_at,
            ),
        )
        self.upsert(account)
        self.ctx.state.set_active_user_id(session.user.id)
        return account

    # Auth subscription
    def subscribe(self) -> Subscription:
        """Record accounts on sign-in, token refresh and user updates."""
        if self._subscription is None or not self._subscription.active:
            self._subscription = self.ctx.auth.on_auth_state_change(self._on_auth_event)
        return self._subscription

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def _on_auth_event(self, event: AuthEvent, session: Session | None) -> None:
        if self._quiet or session is None or event not in _RECORDED_EVENTS:
            return
        await self.record_session(session)

    @contextmanager
    def _recording_explicitly(self):
        self._quiet = True
        try:
            yield
        finally:
            self._quiet = False

    # Switching
    def _await_password(self, target: StoredAccount, error: str | None = None) -> SwitchResult:
        self.ctx.state.set_pending_switch(target.email)
        if error:
            self.ctx.notices.error("Could not switch account", f"Please sign in as {target.display_name}")
        else:
            self.ctx.notices.info("Switch account", f"Please sign in as {target.display_name}")
        return SwitchResult(SwitchState.AWAITING_PASSWORD, target, changed=False, error=error)

    async def _establish(self, credentials: CredentialPair) -> Session:
        """setSession with the stored pair, falling back to a refresh-only exchange."""
        try:
            return await self.ctx.auth.set_session(credentials.access_token, credentials.refresh_token)
        except (AideError, KeyError, ValueError) as e:
            logger.info("Stored session rejected, trying refresh token: %s", e)
        return await self.ctx.auth.refresh_session(credentials.refresh_token)

    async def switch_to(self, target: StoredAccount) -> SwitchResult:
        """Make `target` the active identity.

        Returns ACTIVE when a session was established (or target already active),
        AWAITING_PASSWORD when an interactive sign-in must follow; in that case
        the target e-mail is stored as the pending switch hint.
        """
        session = self.ctx.auth.current_session
        if session is not None and session.user.email and _same_email(session.user.email, target.email):
            return SwitchResult(SwitchState.ACTIVE, target, changed=False)

        if not target.can_quick_switch:
            return self._await_password(target)

        with self._recording_explicitly():
            try:
                new_session = await self._establish(target.credentials)
            except (AideError, KeyError, ValueError) as e:
                logger.warning("Quick switch to %s failed: %s", target.email, e)
                return self._await_password(target, error=str(e))

            if not new_session.user.id or not new_session.user.email:
                return self._await_password(target, error="Session has no resolvable identity")

            account = await self.record_session(new_session)

        self.ctx.notices.info("Switched account", f"Now signed in as {account.display_name}")
        await self._reload()
        return SwitchResult(SwitchState.ACTIVE, account, changed=True)

    async def _reload(self) -> None:
        if self._on_reload is None:
            return
        result = self._on_reload()
        if inspect.isawaitable(result):
            await result

    def consume_pending_switch(self) -> str | None:
        """E-mail to pre-fill on the sign-in prompt; deleted once read."""
        return self.ctx.state.consume_pending_switch()

    # Interactive flows
    async def sign_in(self, email: str, password: str) -> StoredAccount | None:
        with self._recording_explicitly():
            try:
                session = await self.ctx.auth.sign_in_with_password(email, password)
            except AideError as e:
                self.ctx.notices.error("Sign-in failed", str(e))
                return None
            account = await self.record_session(session)
        self.ctx.notices.info("Welcome back", f"Signed in as {account.display_name if account else email}")
        await self._reload()
        return account

    async def sign_up(self, email: str, password: str, username: str | None = None) -> StoredAccount | None:
        with self._recording_explicitly():
            try:
                session = await self.ctx.auth.sign_up(email, password, username)
            except AideError as e:
                self.ctx.notices.error("Sign-up failed", str(e))
                return None
            if session is None:
                self.ctx.notices.info("Account created", "Check your e-mail to confirm the account, then sign in.")
                return None
            account = await self.record_session(session)
        self.ctx.notices.info("Account created", f"Signed in as {account.display_name if account else email}")
        await self._reload()
        return account

    async def sign_out_current(self) -> None:
        """Sign out the live identity.

        Its record stays in the recent list but loses the credential pair, so
        switching back requires the password.
        """
        session = self.ctx.auth.current_session
        if session is not None and session.user.email:
            self._clear_credentials(session.user.email)
        await self.ctx.auth.sign_out()
        self.ctx.state.set_active_user_id(None)
        self.ctx.notices.info("Logged out", "You have been signed out successfully.")

    async def add_account(self) -> None:
        """Leave the current identity signed in remotely and prepare for another sign-in.

        Only the local session is dropped, so its stored refresh token keeps working.
        """
        await self.ctx.auth.forget_session()
        self.ctx.state.set_active_user_id(None)

    async def delete_account(self) -> bool:
        """Delete the signed-in identity and every row it owns, then clear local account state."""
        session = await self.ctx.auth.get_session()
        if session is None:
            self.ctx.notices.error("Not signed in", "Sign in before deleting your account.")
            return False
        try:
            await self.ctx.functions.delete_account(session.access_token)
        except AideError as e:
            logger.warning("Account deletion failed: %s", e)
            self.ctx.notices.error("Error", "Failed to delete account.")
            return False

        self.ctx.state.clear_account_state()
        self._accounts = []
        await self.ctx.auth.forget_session()
        self.ctx.notices.info("Account deleted", "Your account and all of its data were removed.")
        return True
