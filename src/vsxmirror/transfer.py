from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Protocol

import requests

from vsxmirror.exceptions import DownloadFailedError

logger: logging.Logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 8


class DownloadSession(Protocol):
    def get(
        self,
        url: str,
        *,
        stream: bool,
        headers: dict[str, str],
        timeout: tuple[int, int],
    ) -> requests.Response: ...


RunCommand = Callable[..., subprocess.CompletedProcess[str]]


def stream_download_to_target(
    *,
    session: DownloadSession,
    url: str,
    target_path: Path,
    headers: dict[str, str],
    timeout: tuple[int, int],
    temp_prefix: str = "vsxmirror-download.",
) -> Path:
    """Download *url* to *target_path*, which only appears once complete."""
    with tempfile.TemporaryDirectory(prefix=temp_prefix) as tmp_dir:
        partial_path = Path(tmp_dir, f"{target_path.name}.part")
        response = session.get(url, stream=True, headers=headers, timeout=timeout)
        written = 0
        try:
            response.raise_for_status()
            with open(partial_path, "wb") as output:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    written += output.write(chunk)
                output.flush()
                os.fsync(output.fileno())
        finally:
            response.close()

        if written == 0:
            raise DownloadFailedError(f"{url} returned an empty body")
        target_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(partial_path, target_path)

    logger.debug(f"Downloaded {written} bytes from {url} to {target_path}")
    return target_path


def run_git(
    args: list[str],
    *,
    cwd: Path | None = None,
    run_command: RunCommand = subprocess.run,
) -> str:
    """Run a git command and return its stdout, raising on a non-zero exit."""
    cmd = ["git", *args]
    process = run_command(
        cmd,
        cwd=cwd,
        env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
        capture_output=True,
        check=False,
        text=True,
    )
    if process.returncode != 0:
        raise subprocess.CalledProcessError(
            process.returncode, cmd, output=process.stdout, stderr=process.stderr
        )
    return process.stdout
