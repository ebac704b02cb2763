"""Aide: virtual assistant client library, CLI and functions server."""

__version__ = "0.3.0"
