"""API routes."""

from . import account, chat, health, titles

__all__ = ["account", "chat", "health", "titles"]
