"""AI subprocess providers."""
from .base import Provider
from .claude_provider import ClaudeCliProvider

__all__ = [
    "Provider",
    "ClaudeCliProvider",
]
