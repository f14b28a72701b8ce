from __future__ import annotations

import datetime
import platform
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version


def _get_package_version(name: str) -> str:
    """Return the installed version of *name*, or ``"0"`` if not found."""
    try:
        return _pkg_version(name)
    except PackageNotFoundError:
        return "0"


_vsxmirror_version = _get_package_version("vsxmirror")

DEFAULT_USER_AGENT = (
    f"vsxmirror/{_vsxmirror_version}"
    f" ({platform.system()}; {platform.machine()}; compatible)"
)

GITHUB_API_URL = "https://api.github.com"
GITHUB_TOKEN_ENV = "GITHUB_TOKEN"

# packaged extensions attached to a GitHub release
RELEASE_ASSET_PATTERN = r"/releases/download/[-._a-zA-Z0-9/%]*\.vsix"

HTTP_REQUEST_TIMEOUT_SECONDS = 30
HTTP_STREAM_CONNECT_TIMEOUT_SECONDS = 10
HTTP_STREAM_READ_TIMEOUT_SECONDS = 120

HTTP_RETRY_TOTAL = 3
HTTP_RETRY_BACKOFF_FACTOR = 1
HTTP_RETRY_STATUS_FORCELIST = [429, 500, 502, 503, 504]
HTTP_RETRY_ALLOWED_METHODS = ["HEAD", "GET", "OPTIONS"]

# empirical resolution bounds, overridable through VSXMIRROR_* variables
UNMAINTAINED_AFTER_MONTHS = 2
COMMIT_SEARCH_LIMIT = 30
COMMIT_SEARCH_PAD = datetime.timedelta(hours=12)
RECENT_TAG_LIMIT = 3

DEFAULT_TIMEOUT_MINUTES = 5
