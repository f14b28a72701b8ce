from __future__ import annotations

import datetime
import logging
import re
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Iterator, Protocol
from urllib.parse import urlparse

import requests

from vsxmirror.exceptions import (
    DownloadFailedError,
    ManifestUnreadableError,
    SourceUnreachableError,
)
from vsxmirror.github_client import GitHubReleaseClient
from vsxmirror.models import CommitInfo, ManifestSnapshot
from vsxmirror.transfer import RunCommand, run_git
from vsxmirror.vsix import parse_package_manifest, read_vsix_manifest

logger: logging.Logger = logging.getLogger(__name__)

SUPPORTED_URL_SCHEMES = {"http", "https", "ssh", "git", "file"}
_SCP_LIKE_URL = re.compile(r"^[\w.-]+@[\w.-]+:[^/].*$")


class SourceProbe(Protocol):
    """Read-only view of a source repository used during resolution."""

    def latest_release_assets(self, repository_url: str) -> list[str]: ...

    def latest_release_tag(self, repository_url: str) -> str | None: ...

    def recent_tags(self, repository_url: str, limit: int) -> list[str]: ...

    def list_commits(
        self,
        repository_url: str,
        *,
        until: datetime.datetime | None = None,
        limit: int | None = None,
    ) -> list[CommitInfo]: ...

    def read_manifest_at(
        self,
        repository_url: str,
        ref: str,
        subdirectory: str | None = None,
    ) -> ManifestSnapshot: ...

    def download_and_read_manifest(self, asset_url: str) -> ManifestSnapshot: ...


def validate_repository_url(url: str) -> None:
    """Raise ``SourceUnreachableError`` for URLs git could never clone."""
    candidate = url.strip()
    if _SCP_LIKE_URL.match(candidate):
        return
    parsed = urlparse(candidate)
    if parsed.scheme not in SUPPORTED_URL_SCHEMES:
        raise SourceUnreachableError(f"Invalid repository URL: {url!r}")
    if parsed.scheme != "file" and not parsed.netloc:
        raise SourceUnreachableError(f"Repository URL has no host: {url!r}")
    if not parsed.path.strip("/"):
        raise SourceUnreachableError(f"Repository URL has no path: {url!r}")


def parse_github_repository(url: str) -> tuple[str, str] | None:
    """Return ``(owner, repo)`` for github.com URLs, ``None`` otherwise."""
    parsed = urlparse(url.strip())
    if parsed.netloc not in {"github.com", "www.github.com"}:
        return None
    parts = parsed.path.strip("/").split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    owner, repo = parts[:2]
    return owner, repo.removesuffix(".git")


def manifest_path(subdirectory: str | None) -> str:
    if not subdirectory:
        return "package.json"
    path = PurePosixPath(subdirectory.strip("/"), "package.json")
    return str(path)


def parse_commit_lines(output: str) -> list[CommitInfo]:
    commits: list[CommitInfo] = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        sha, _, date = line.partition(" ")
        try:
            timestamp = datetime.datetime.fromisoformat(date.strip())
        except ValueError:
            logger.debug(f"Skipping commit line with unparsable date: {line}")
            continue
        commits.append(
            CommitInfo(sha=sha, timestamp=timestamp.astimezone(datetime.timezone.utc))
        )
    return commits


class GitSourceProbe(object):
    """SourceProbe backed by blobless git clones and the GitHub release API."""

    workspace: Path
    github: GitHubReleaseClient | None
    _clones: dict[str, Path]
    _downloads: int

    def __init__(
        self,
        workspace: Path,
        github: GitHubReleaseClient | None = None,
        run_command: RunCommand = subprocess.run,
    ) -> None:
        self.workspace = workspace
        self.github = github
        self.run_command = run_command
        self._clones = {}
        self._downloads = 0

    def _git(self, args: list[str], cwd: Path | None = None) -> str:
        return run_git(args, cwd=cwd, run_command=self.run_command)

    def clone(self, repository_url: str) -> Path:
        """Clone *repository_url* once per probe and return the clone path."""
        validate_repository_url(repository_url)
        if repository_url in self._clones:
            return self._clones[repository_url]

        target = self.workspace.joinpath(f"repository-{len(self._clones)}")
        if target.exists():
            shutil.rmtree(target)
        logger.debug(f"Cloning {repository_url} into {target}")
        try:
            self._git(
                [
                    "clone",
                    "--filter=blob:none",
                    "--no-checkout",
                    "--quiet",
                    repository_url,
                    str(target),
                ]
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or exc.stdout or "").strip()
            raise SourceUnreachableError(
                f"Cannot clone {repository_url}: {stderr or exc}"
            ) from exc
        self._clones[repository_url] = target
        return target

    def _release_client(self, repository_url: str) -> tuple[str, str] | None:
        if self.github is None or not self.github.enabled:
            return None
        return parse_github_repository(repository_url)

    def latest_release_assets(self, repository_url: str) -> list[str]:
        repository = self._release_client(repository_url)
        if repository is None:
            return []
        try:
            return self.github.latest_release_asset_urls(*repository)
        except requests.RequestException as exc:
            logger.warning(f"Cannot list release assets of {repository_url}: {exc}")
            return []

    def latest_release_tag(self, repository_url: str) -> str | None:
        repository = self._release_client(repository_url)
        if repository is None:
            return None
        try:
            return self.github.latest_release_tag(*repository)
        except requests.RequestException as exc:
            logger.warning(f"Cannot read latest release of {repository_url}: {exc}")
            return None

    def recent_tags(self, repository_url: str, limit: int) -> list[str]:
        repo_path = self.clone(repository_url)
        try:
            output = self._git(
                [
                    "for-each-ref",
                    "--sort=-creatordate",
                    f"--count={limit}",
                    "--format=%(refname:short)",
                    "refs/tags",
                ],
                cwd=repo_path,
            )
        except subprocess.CalledProcessError as exc:
            logger.debug(f"Cannot list tags of {repository_url}: {exc}")
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def list_commits(
        self,
        repository_url: str,
        *,
        until: datetime.datetime | None = None,
        limit: int | None = None,
    ) -> list[CommitInfo]:
        repo_path = self.clone(repository_url)
        args = ["log", "--format=%H %cI"]
        if limit is not None:
            args.insert(1, f"-{limit}")
        if until is not None:
            cutoff = until.astimezone(datetime.timezone.utc)
            args.append(f"--until={cutoff.strftime('%Y-%m-%d %H:%M:%S +0000')}")
        try:
            output = self._git(args, cwd=repo_path)
        except subprocess.CalledProcessError as exc:
            # empty repositories have no HEAD to walk
            logger.debug(f"Cannot list commits of {repository_url}: {exc}")
            return []
        return parse_commit_lines(output)

    def read_manifest_at(
        self,
        repository_url: str,
        ref: str,
        subdirectory: str | None = None,
    ) -> ManifestSnapshot:
        repo_path = self.clone(repository_url)
        path = manifest_path(subdirectory)
        try:
            text = self._git(["show", f"{ref}:{path}"], cwd=repo_path)
        except subprocess.CalledProcessError as exc:
            raise ManifestUnreadableError(f"No {path} at {ref}") from exc
        return parse_package_manifest(text)

    def download_and_read_manifest(self, asset_url: str) -> ManifestSnapshot:
        if self.github is None:
            raise DownloadFailedError(f"No release client to download {asset_url}")
        self._downloads += 1
        target = self.workspace.joinpath(
            "downloads", f"asset-{self._downloads}.vsix"
        )
        try:
            self.github.download_asset(asset_url, target)
        except (requests.RequestException, OSError) as exc:
            raise DownloadFailedError(f"Cannot download {asset_url}: {exc}") from exc
        return read_vsix_manifest(target)


def prepare_workspace(workspace: Path) -> Path:
    """Empty *workspace* so a previous run cannot leak into this one."""
    if workspace.exists():
        shutil.rmtree(workspace)
    workspace.mkdir(parents=True)
    return workspace


@contextmanager
def open_source_probe(
    workspace: Path | None = None,
    github: GitHubReleaseClient | None = None,
    run_command: RunCommand = subprocess.run,
) -> Iterator[GitSourceProbe]:
    """Yield a probe whose scratch directory is removed on every exit path."""
    if workspace is None:
        with tempfile.TemporaryDirectory(prefix="vsxmirror-") as tmp_dir:
            yield GitSourceProbe(Path(tmp_dir), github=github, run_command=run_command)
        return

    prepare_workspace(workspace)
    try:
        yield GitSourceProbe(workspace, github=github, run_command=run_command)
    finally:
        shutil.rmtree(workspace, ignore_errors=True)
