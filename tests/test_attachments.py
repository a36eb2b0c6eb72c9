"""Tests for deskbridge.engine.attachments - inbound file downloads."""

from __future__ import annotations

import pytest

from deskbridge.engine.attachments import (
    MAX_FILE_SIZE,
    fetch_attachments,
    remove_attachments,
    unsupported_reason,
)
from deskbridge.engine.models import InboundFile


def _file(name: str, **kwargs) -> InboundFile:
    return InboundFile(name=name, url=f"https://files.example/{name}", **kwargs)


class TestUnsupportedReason:
    def test_supported_by_suffix(self):
        assert unsupported_reason(_file("Chart.PNG")) is None

    def test_filetype_wins_over_suffix(self):
        assert unsupported_reason(_file("export", filetype="csv")) is None

    def test_unsupported_type(self):
        assert unsupported_reason(_file("setup.exe")) == "unsupported type: .exe"

    def test_too_large(self):
        reason = unsupported_reason(_file("big.pdf", size=MAX_FILE_SIZE + 1024 * 1024))
        assert reason == "too large: 11.0MB (max 10MB)"


@pytest.mark.asyncio
async def test_fetch_downloads_supported_files(platform, tmp_path) -> None:
    dest_dir = tmp_path / "sess-1"
    attachments, skipped = await fetch_attachments(
        platform, [_file("notes.md"), _file("clip.mov")], dest_dir,
    )

    assert [a.path for a in attachments] == [dest_dir / "notes.md"]
    assert attachments[0].name == "notes.md"
    assert (dest_dir / "notes.md").read_text() == "contents for notes.md"
    assert skipped == ["clip.mov: unsupported type: .mov"]


@pytest.mark.asyncio
async def test_fetch_keeps_files_inside_directory(platform, tmp_path) -> None:
    dest_dir = tmp_path / "sess-1"
    attachments, _ = await fetch_attachments(platform, [_file("../../escape.txt")], dest_dir)
    assert attachments[0].path == dest_dir / "escape.txt"


@pytest.mark.asyncio
async def test_fetch_reports_download_failures(platform, tmp_path) -> None:
    platform.fail_ops.add("download")
    attachments, skipped = await fetch_attachments(platform, [_file("a.pdf")], tmp_path / "s")
    assert attachments == []
    assert skipped == ["a.pdf: download failed: boom"]


def test_remove_attachments(tmp_path) -> None:
    dest_dir = tmp_path / "sess-1"
    dest_dir.mkdir()
    (dest_dir / "a.png").write_bytes(b"png")

    assert remove_attachments(dest_dir) is True
    assert not dest_dir.exists()
    assert remove_attachments(dest_dir) is False
