from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import requests
from requests.adapters import HTTPAdapter, Retry

from vsxmirror.internal_config import (
    DEFAULT_USER_AGENT,
    GITHUB_API_URL,
    GITHUB_TOKEN_ENV,
    HTTP_REQUEST_TIMEOUT_SECONDS,
    HTTP_RETRY_ALLOWED_METHODS,
    HTTP_RETRY_BACKOFF_FACTOR,
    HTTP_RETRY_STATUS_FORCELIST,
    HTTP_RETRY_TOTAL,
    HTTP_STREAM_CONNECT_TIMEOUT_SECONDS,
    HTTP_STREAM_READ_TIMEOUT_SECONDS,
    RELEASE_ASSET_PATTERN,
)
from vsxmirror.transfer import stream_download_to_target

logger: logging.Logger = logging.getLogger(__name__)


def is_release_asset_url(url: str) -> bool:
    return re.search(RELEASE_ASSET_PATTERN, url) is not None


class GitHubReleaseClient(object):
    """Look up the latest release of a GitHub repository and fetch its assets."""

    session: requests.Session
    token: str
    _releases: dict[tuple[str, str], dict[str, Any] | None]

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": DEFAULT_USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    def get_latest_release(self, owner: str, repo: str) -> dict[str, Any] | None:
        """Return the latest release payload, or ``None`` if the repo has none."""
        if (owner, repo) in self._releases:
            return self._releases[(owner, repo)]
        logger.debug(f"Fetching latest release of {owner}/{repo}")
        r = self.session.get(
            f"{GITHUB_API_URL}/repos/{owner}/{repo}/releases/latest",
            headers=self._headers(),
            timeout=HTTP_REQUEST_TIMEOUT_SECONDS,
        )
        release: dict[str, Any] | None = None
        if r.status_code != 404:
            r.raise_for_status()
            release = r.json()
        self._releases[(owner, repo)] = release
        return release

    def latest_release_asset_urls(self, owner: str, repo: str) -> list[str]:
        release = self.get_latest_release(owner, repo)
        if not release:
            return []
        urls = [
            str(asset.get("browser_download_url", ""))
            for asset in release.get("assets", [])
            if isinstance(asset, dict)
        ]
        return [url for url in urls if is_release_asset_url(url)]

    def latest_release_tag(self, owner: str, repo: str) -> str | None:
        release = self.get_latest_release(owner, repo)
        if not release:
            return None
        return release.get("tag_name") or None

    def download_asset(self, url: str, target_path: Path) -> Path:
        logger.info(f"Downloading {url}")
        return stream_download_to_target(
            session=self.session,
            url=url,
            target_path=target_path,
            headers={"User-Agent": DEFAULT_USER_AGENT},
            timeout=(
                HTTP_STREAM_CONNECT_TIMEOUT_SECONDS,
                HTTP_STREAM_READ_TIMEOUT_SECONDS,
            ),
        )

    def __init__(self, token: str | None = None) -> None:
        self.token = (
            token if token is not None else os.environ.get(GITHUB_TOKEN_ENV, "")
        )
        self._releases = {}
        retry_strategy = Retry(
            total=HTTP_RETRY_TOTAL,
            backoff_factor=HTTP_RETRY_BACKOFF_FACTOR,
            status_forcelist=HTTP_RETRY_STATUS_FORCELIST,
            allowed_methods=HTTP_RETRY_ALLOWED_METHODS,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session = requests.Session()
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
