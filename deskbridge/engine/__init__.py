"""deskbridge engine: Slack threads to resumable Claude CLI sessions."""
from .models import (
    Attachment,
    DeskBoundaries,
    InboundFile,
    ThreadKey,
    ThreadSession,
)
from .config import BridgeConfig
from .errors import (
    BridgeError,
    ChannelConfigError,
    DeskConfigError,
    MessageTooLongError,
    PlatformError,
    ProviderNotAvailableError,
    SubprocessFailedError,
)

__all__ = [
    # Orchestrator (lazy import to avoid circular deps)
    "ConversationOrchestrator",
    # Models
    "Attachment",
    "DeskBoundaries",
    "InboundFile",
    "ThreadKey",
    "ThreadSession",
    # Config
    "BridgeConfig",
    # Building blocks (lazy import)
    "SessionRegistry",
    "PromptManager",
    "OutputDelivery",
    "StreamEventProcessor",
    # Providers (lazy import)
    "Provider",
    "ClaudeCliProvider",
    # Errors
    "BridgeError",
    "ChannelConfigError",
    "DeskConfigError",
    "MessageTooLongError",
    "PlatformError",
    "ProviderNotAvailableError",
    "SubprocessFailedError",
]


def __getattr__(name: str):
    if name == "ConversationOrchestrator":
        from .orchestrator import ConversationOrchestrator
        return ConversationOrchestrator
    if name == "SessionRegistry":
        from .session_registry import SessionRegistry
        return SessionRegistry
    if name == "PromptManager":
        from .prompt_manager import PromptManager
        return PromptManager
    if name == "OutputDelivery":
        from .delivery import OutputDelivery
        return OutputDelivery
    if name == "StreamEventProcessor":
        from .stream_processor import StreamEventProcessor
        return StreamEventProcessor
    if name == "Provider":
        from .providers.base import Provider
        return Provider
    if name == "ClaudeCliProvider":
        from .providers.claude_provider import ClaudeCliProvider
        return ClaudeCliProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
