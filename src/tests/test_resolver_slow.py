from __future__ import annotations

import datetime
import json
import os
import shutil
import subprocess
from pathlib import Path

import pytest

from vsxmirror.models import (
    ExtensionIdentity,
    ExtensionSource,
    Matched,
    Tag,
    TargetVersion,
)
from vsxmirror.probe import open_source_probe
from vsxmirror.resolver import Resolver

pytestmark = [
    pytest.mark.slow,
    pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed"),
]

NOW = datetime.datetime(2024, 1, 15, tzinfo=datetime.timezone.utc)


def _git(repo: Path, *args: str, date: str | None = None) -> str:
    env = {
        **os.environ,
        "GIT_AUTHOR_NAME": "Test",
        "GIT_AUTHOR_EMAIL": "test@example.com",
        "GIT_COMMITTER_NAME": "Test",
        "GIT_COMMITTER_EMAIL": "test@example.com",
    }
    if date is not None:
        env["GIT_AUTHOR_DATE"] = date
        env["GIT_COMMITTER_DATE"] = date
    process = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", "-c", "tag.gpgsign=false", *args],
        cwd=repo,
        env=env,
        capture_output=True,
        check=True,
        text=True,
    )
    return process.stdout.strip()


def _commit_version(repo: Path, version: str, date: str) -> str:
    package_dir = repo / "packages" / "ext"
    package_dir.mkdir(parents=True, exist_ok=True)
    (package_dir / "package.json").write_text(
        json.dumps({"publisher": "pub", "name": "ext", "version": version})
    )
    _git(repo, "add", "-A")
    _git(repo, "commit", "--quiet", "-m", f"release {version}", date=date)
    return _git(repo, "rev-parse", "HEAD")


@pytest.fixture
def repository(tmp_path: Path) -> tuple[Path, dict[str, str]]:
    repo = tmp_path / "origin"
    repo.mkdir()
    _git(repo, "init", "--quiet")
    shas = {
        "1.0.0": _commit_version(repo, "1.0.0", "2024-01-05T10:00:00+00:00"),
        "1.1.0": _commit_version(repo, "1.1.0", "2024-01-09T10:00:00+00:00"),
    }
    _git(repo, "tag", "v1.1.0")
    shas["1.2.0-dev"] = _commit_version(repo, "1.2.0-dev", "2024-01-12T10:00:00+00:00")
    return repo, shas


def _resolve(tmp_path: Path, repo: Path, target: TargetVersion):
    source = ExtensionSource(repo.as_uri(), subdirectory="packages/ext")
    with open_source_probe(workspace=tmp_path / "workspace") as probe:
        resolver = Resolver(probe, clock=lambda: NOW)
        return resolver.resolve(ExtensionIdentity("pub.ext"), source, target)


def test_resolves_recent_tag_from_real_repository(tmp_path: Path, repository) -> None:
    repo, _ = repository

    result = _resolve(
        tmp_path,
        repo,
        TargetVersion(
            "1.1.0", datetime.datetime(2024, 1, 10, tzinfo=datetime.timezone.utc)
        ),
    )

    assert result is not None
    assert result.resolution == Tag("v1.1.0")
    assert result.source_location == repo.as_uri()
    assert not (tmp_path / "workspace").exists()


def test_resolves_commit_by_last_update_date(tmp_path: Path, repository) -> None:
    repo, shas = repository

    result = _resolve(
        tmp_path,
        repo,
        TargetVersion(
            "1.0.0", datetime.datetime(2024, 1, 6, tzinfo=datetime.timezone.utc)
        ),
    )

    assert result is not None
    assert result.resolution == Matched(shas["1.0.0"])
    assert result.version == "1.0.0"
