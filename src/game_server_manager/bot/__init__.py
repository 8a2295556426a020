"""Discord-facing command layer."""

from .commands import CommandRouter

__all__ = ["CommandRouter"]
