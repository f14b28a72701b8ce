from __future__ import annotations

import datetime

import pytest

from vsxmirror.exceptions import (
    DownloadFailedError,
    ManifestUnreadableError,
    SourceUnreachableError,
)
from vsxmirror.models import CommitInfo, ManifestSnapshot


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--slow",
        action="store_true",
        default=False,
        help="run slow tests that drive a real git binary",
    )
    parser.addoption(
        "--only-slow",
        action="store_true",
        default=False,
        help="run only tests marked as slow",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "slow: marks tests as slow")


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    only_slow = bool(config.getoption("--only-slow"))
    run_slow = bool(config.getoption("--slow")) or only_slow

    if only_slow:
        selected = [item for item in items if "slow" in item.keywords]
        deselected = [item for item in items if "slow" not in item.keywords]
        if deselected:
            config.hook.pytest_deselected(items=deselected)
        items[:] = selected

    if run_slow:
        return

    skip_slow = pytest.mark.skip(reason="need --slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


class FakeProbe:
    """In-memory repository answering the SourceProbe calls."""

    def __init__(
        self,
        *,
        commits: list[CommitInfo] | None = None,
        manifests: dict[str, ManifestSnapshot | Exception] | None = None,
        tags: list[str] | None = None,
        release_tag: str | None = None,
        assets: dict[str, ManifestSnapshot | Exception] | None = None,
        unreachable: bool = False,
    ) -> None:
        self.commits = list(commits or [])
        self.manifests = dict(manifests or {})
        self.tags = list(tags or [])
        self.release_tag = release_tag
        self.assets = dict(assets or {})
        self.unreachable = unreachable
        self.calls: list[tuple[object, ...]] = []

    def _reach(self, repository_url: str) -> None:
        if self.unreachable:
            raise SourceUnreachableError(f"Cannot clone {repository_url}")

    def latest_release_assets(self, repository_url: str) -> list[str]:
        self.calls.append(("latest_release_assets", repository_url))
        return list(self.assets)

    def latest_release_tag(self, repository_url: str) -> str | None:
        self.calls.append(("latest_release_tag", repository_url))
        return self.release_tag

    def recent_tags(self, repository_url: str, limit: int) -> list[str]:
        self._reach(repository_url)
        self.calls.append(("recent_tags", limit))
        return self.tags[:limit]

    def list_commits(
        self,
        repository_url: str,
        *,
        until: datetime.datetime | None = None,
        limit: int | None = None,
    ) -> list[CommitInfo]:
        self._reach(repository_url)
        self.calls.append(("list_commits", until, limit))
        commits = [
            commit
            for commit in self.commits
            if until is None or commit.timestamp <= until
        ]
        return commits[:limit] if limit is not None else commits

    def read_manifest_at(
        self,
        repository_url: str,
        ref: str,
        subdirectory: str | None = None,
    ) -> ManifestSnapshot:
        self._reach(repository_url)
        self.calls.append(("read_manifest_at", ref, subdirectory))
        value = self.manifests.get(ref)
        if value is None:
            raise ManifestUnreadableError(f"No package.json at {ref}")
        if isinstance(value, Exception):
            raise value
        return value

    def download_and_read_manifest(self, asset_url: str) -> ManifestSnapshot:
        self.calls.append(("download_and_read_manifest", asset_url))
        value = self.assets.get(asset_url)
        if value is None:
            raise DownloadFailedError(f"Cannot download {asset_url}")
        if isinstance(value, Exception):
            raise value
        return value

    def manifest_reads(self) -> list[str]:
        return [str(call[1]) for call in self.calls if call[0] == "read_manifest_at"]


@pytest.fixture
def make_probe() -> type[FakeProbe]:
    return FakeProbe
