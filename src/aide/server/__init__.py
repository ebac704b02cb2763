"""Functions server: chat relay, title generation and account deletion."""

from aide import __version__

__all__ = ["__version__"]
