"""Inbound file attachments.

Files shared with a message are downloaded into a per-session directory
before the invocation starts; Claude sees their local paths as
``[Attached: path]`` lines. Unsupported or oversized files are skipped
and reported to Claude in a ``[Skipped attachments: ...]`` line.
"""
from __future__ import annotations

import logging
import shutil
from pathlib import Path

from deskbridge.engine.errors import PlatformError
from deskbridge.engine.models import Attachment, InboundFile
from deskbridge.engine.platform import ChatPlatform

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({
    "png", "jpg", "jpeg", "gif", "webp",
    "pdf",
    "txt", "md", "csv", "json", "ts", "js",
})
MAX_FILE_SIZE = 10 * 1024 * 1024


def unsupported_reason(file: InboundFile) -> str | None:
    """Why the file cannot be handed to Claude, or None when it can."""
    ext = file.extension
    if ext not in SUPPORTED_EXTENSIONS:
        return f"unsupported type: .{ext}"
    if file.size > MAX_FILE_SIZE:
        return f"too large: {file.size / 1024 / 1024:.1f}MB (max 10MB)"
    return None


async def fetch_attachments(
    platform: ChatPlatform,
    files: list[InboundFile],
    dest_dir: Path,
) -> tuple[list[Attachment], list[str]]:
    """Download every supported file; returns the attachments and skip notes."""
    attachments: list[Attachment] = []
    skipped: list[str] = []
    for file in files:
        reason = unsupported_reason(file)
        if reason is not None:
            logger.info("Skipping attachment %s: %s", file.name, reason)
            skipped.append(f"{file.name}: {reason}")
            continue
        # Only the base name; never let a remote name escape the directory.
        dest = dest_dir / Path(file.name).name
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            await platform.download_file(file, dest)
        except (PlatformError, OSError) as e:
            logger.warning("Failed to download %s: %s", file.name, e)
            reason = e.reason if isinstance(e, PlatformError) else str(e)
            skipped.append(f"{file.name}: download failed: {reason}")
            continue
        attachments.append(Attachment(path=dest, name=file.name))
    return attachments, skipped


def remove_attachments(dest_dir: Path) -> bool:
    """Delete a session's downloaded files; True when something was removed."""
    if not dest_dir.exists():
        return False
    try:
        shutil.rmtree(dest_dir)
    except OSError:
        logger.exception("Failed to clean up attachments in %s", dest_dir)
        return False
    logger.info("Cleaned up attachments in %s", dest_dir)
    return True
