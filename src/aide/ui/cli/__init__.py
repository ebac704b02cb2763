"""Command line front end."""

from .app import AideCli, StreamPrinter, print_notice

__all__ = ["AideCli", "StreamPrinter", "print_notice"]
