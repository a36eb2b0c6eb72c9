"""Exception hierarchy for the bridge engine.

Specific exceptions for each failure mode. Invocation-level code
catches these at the thread boundary so one thread's failure never
reaches another.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class SubprocessFailedError(BridgeError):
    """The AI subprocess exited with a non-zero status."""
    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no stderr output"
        super().__init__(
            f"Claude exited with code {returncode}: {detail}"
        )


class ProviderNotAvailableError(BridgeError):
    """The provider binary is not installed or not on PATH."""
    def __init__(self, command: str):
        self.command = command
        super().__init__(
            f"'{command}' CLI not found. Install it or set BRIDGE_CLAUDE_COMMAND."
        )


class PlatformError(BridgeError):
    """A chat-platform API call failed."""
    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Chat platform {operation} failed: {reason}")


class MessageTooLongError(PlatformError):
    """The chat platform rejected a message because of its length."""
    def __init__(self, operation: str, length: int):
        self.length = length
        super().__init__(operation, f"message too long ({length} chars)")


class DeskConfigError(BridgeError):
    """A desk definition file is invalid."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid desk definition {path}: {reason}")


class ChannelConfigError(BridgeError):
    """The channel policy file is invalid."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid channel config {path}: {reason}")
