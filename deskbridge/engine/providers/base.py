"""Abstract base for AI subprocess providers.

A provider runs one invocation of an AI runtime for a thread's session
and yields parsed stream events as they arrive. The orchestrator never
spawns processes itself; it only consumes ``run()``.
"""
from __future__ import annotations

import abc
import logging
import shutil
from typing import AsyncIterator

from deskbridge.engine.models import StreamEvent

logger = logging.getLogger(__name__)


class Provider(abc.ABC):
    """Abstract provider interface.

    Implementations:
    - ClaudeCliProvider: the ``claude`` CLI in headless stream-json mode
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name (e.g. 'claude')."""

    @abc.abstractmethod
    def run(
        self,
        prompt: str,
        *,
        session_id: str,
        resume: bool,
        system_prompt: str | None = None,
        cwd: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Run one invocation and yield its events in order.

        ``resume`` selects between continuing ``session_id`` and starting
        a new session under that id. Raises SubprocessFailedError once
        the stream is exhausted if the process exited non-zero, and
        ProviderNotAvailableError if the runtime cannot be started.
        """

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Check if this provider's runtime is installed."""

    def resolve_command(self, command: str, fallback: str | None = None) -> str:
        """Resolve a provider binary by preferring explicit command, then fallback.

        The command may point to a CLI that is not on PATH when using
        custom wrappers or tests. In that case, keep the raw value so
        callers can surface the configured command in error messages.
        """
        if command and shutil.which(command):
            return command
        if fallback and shutil.which(fallback):
            logger.debug(
                "Command %s not found; falling back to %s for provider %s",
                command, fallback, self.name,
            )
            return fallback
        return command or fallback or ""
