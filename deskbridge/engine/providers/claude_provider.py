"""Claude provider: runs the ``claude`` CLI in headless stream-json mode.

One subprocess per invocation. The session id is chosen by the bridge,
so a new thread starts with ``--session-id`` and every later message
continues it with ``--resume``.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
from typing import AsyncIterator

from deskbridge.engine.errors import ProviderNotAvailableError, SubprocessFailedError
from deskbridge.engine.models import StreamEvent
from deskbridge.engine.stream_parser import iter_stream_events

from .base import Provider

logger = logging.getLogger(__name__)

# stream-json lines carry whole tool inputs and results; the asyncio
# default of 64 KiB is too small for large file reads.
_STREAM_LIMIT = 16 * 1024 * 1024


async def _drain(stream: asyncio.StreamReader | None) -> str:
    if stream is None:
        return ""
    chunks: list[str] = []
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            break
        chunks.append(chunk.decode("utf-8", errors="replace"))
    return "".join(chunks)


class ClaudeCliProvider(Provider):
    """Spawns ``claude -p`` and yields parsed stream events."""

    def __init__(
        self,
        command: str = "claude",
        *,
        model: str = "sonnet",
        permission_mode: str = "acceptEdits",
        settings_path: str | None = None,
        default_cwd: str | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> None:
        self._command = self.resolve_command(command, "claude")
        self._model = model
        self._permission_mode = permission_mode
        self._settings_path = settings_path
        self._default_cwd = default_cwd
        self._extra_env = dict(extra_env or {})

    @property
    def name(self) -> str:
        return "claude"

    @property
    def command(self) -> str:
        return self._command

    def is_available(self) -> bool:
        return shutil.which(self._command) is not None

    def build_cmd(
        self,
        prompt: str,
        *,
        session_id: str,
        resume: bool,
        system_prompt: str | None = None,
    ) -> list[str]:
        cmd = [
            self._command,
            "-p",
            "--output-format", "stream-json",
            "--verbose",
            "--model", self._model,
            "--permission-mode", self._permission_mode,
        ]
        if self._settings_path:
            cmd.extend(["--settings", self._settings_path])
        if system_prompt:
            cmd.extend(["--append-system-prompt", system_prompt])
        if resume:
            cmd.extend(["--resume", session_id])
        else:
            cmd.extend(["--session-id", session_id])
        # The prompt is user text; keep it from being read as a flag.
        cmd.extend(["--", prompt])
        return cmd

    def _build_env(self, session_id: str) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self._extra_env)
        env["BRIDGE_SESSION_ID"] = session_id
        return env

    async def run(
        self,
        prompt: str,
        *,
        session_id: str,
        resume: bool,
        system_prompt: str | None = None,
        cwd: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        cmd = self.build_cmd(
            prompt, session_id=session_id, resume=resume, system_prompt=system_prompt,
        )
        workdir = cwd or self._default_cwd
        logger.info(
            "Spawning %s (%s session %s) cwd=%s",
            self._command, "resume" if resume else "new", session_id, workdir,
        )

        try:
            # create_subprocess_exec passes args as array, no shell
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(session_id),
                cwd=workdir,
                limit=_STREAM_LIMIT,
            )
        except FileNotFoundError as exc:
            raise ProviderNotAvailableError(self._command) from exc

        stderr_task = asyncio.create_task(_drain(proc.stderr))
        completed = False
        try:
            async for event in iter_stream_events(proc.stdout):
                yield event
            await proc.wait()
            completed = True
        finally:
            if not completed:
                # Consumer stopped early or was cancelled.
                await self._terminate(proc)
                stderr_task.cancel()

        stderr = await stderr_task
        logger.info("Claude process exited with code %s", proc.returncode)
        if proc.returncode != 0:
            raise SubprocessFailedError(proc.returncode, stderr)
        if stderr.strip():
            logger.warning("Claude stderr: %s", stderr.strip()[-2000:])

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
