from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest
import requests

from vsxmirror.exceptions import DownloadFailedError
from vsxmirror.transfer import run_git, stream_download_to_target


class _Response:
    def __init__(self, chunks: list[bytes], status_code: int = 200) -> None:
        self._chunks = chunks
        self.status_code = status_code
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size: int):
        assert chunk_size == 1024 * 8
        return iter(self._chunks)

    def close(self) -> None:
        self.closed = True


def test_stream_download_writes_chunks_to_target(tmp_path: Path) -> None:
    calls: list[dict] = []
    response = _Response([b"PK", b"", b"data"])

    def _get(url: str, **kwargs) -> _Response:
        calls.append({"url": url, **kwargs})
        return response

    target = tmp_path / "nested" / "ext.vsix"
    result = stream_download_to_target(
        session=SimpleNamespace(get=_get),
        url="https://x/ext.vsix",
        target_path=target,
        headers={"User-Agent": "test"},
        timeout=(1, 2),
    )

    assert result == target
    assert target.read_bytes() == b"PKdata"
    assert calls[0]["stream"] is True
    assert calls[0]["timeout"] == (1, 2)
    assert response.closed


def test_stream_download_failure_leaves_no_target(tmp_path: Path) -> None:
    target = tmp_path / "ext.vsix"

    with pytest.raises(requests.HTTPError):
        stream_download_to_target(
            session=SimpleNamespace(get=lambda url, **kwargs: _Response([], 404)),
            url="https://x/ext.vsix",
            target_path=target,
            headers={},
            timeout=(1, 2),
        )

    assert not target.exists()


def test_run_git_returns_stdout_and_disables_prompts(tmp_path: Path) -> None:
    calls: list[dict] = []

    def _run(cmd: list[str], **kwargs) -> subprocess.CompletedProcess[str]:
        calls.append({"cmd": cmd, **kwargs})
        return subprocess.CompletedProcess(cmd, 0, "abc\n", "")

    assert run_git(["rev-parse", "HEAD"], cwd=tmp_path, run_command=_run) == "abc\n"
    assert calls[0]["cmd"] == ["git", "rev-parse", "HEAD"]
    assert calls[0]["cwd"] == tmp_path
    assert calls[0]["env"]["GIT_TERMINAL_PROMPT"] == "0"
    assert calls[0]["text"] is True


def test_run_git_raises_on_failure() -> None:
    def _run(cmd: list[str], **kwargs) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(cmd, 128, "", "fatal: not a git repository")

    with pytest.raises(subprocess.CalledProcessError) as exc_info:
        run_git(["status"], run_command=_run)

    assert exc_info.value.returncode == 128
    assert "not a git repository" in exc_info.value.stderr


def test_stream_download_rejects_empty_body(tmp_path: Path) -> None:
    target = tmp_path / "ext.vsix"

    with pytest.raises(DownloadFailedError, match="empty body"):
        stream_download_to_target(
            session=SimpleNamespace(get=lambda url, **kwargs: _Response([b""])),
            url="https://x/ext.vsix",
            target_path=target,
            headers={},
            timeout=(1, 2),
        )

    assert not target.exists()
