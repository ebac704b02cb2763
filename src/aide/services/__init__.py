"""Services layer: identity-scoped application logic on top of the clients."""

from .account_registry import AccountRegistry, CredentialPair, StoredAccount, SwitchResult, SwitchState
from .chat_session import ChatMessage, ChatSession, ChatState
from .context import AppContext
from .notices import Notice, NoticeBoard

__all__ = [
    # Accounts
    "AccountRegistry",
    "CredentialPair",
    "StoredAccount",
    "SwitchResult",
    "SwitchState",
    # Chat
    "ChatMessage",
    "ChatSession",
    "ChatState",
    # Context and notices
    "AppContext",
    "Notice",
    "NoticeBoard",
]
