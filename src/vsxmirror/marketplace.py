from __future__ import annotations

import datetime
from typing import Any, Protocol

from vsxmirror.models import TargetVersion

PRE_RELEASE_PROPERTY = "Microsoft.VisualStudio.Code.PreRelease"
FIRST_PARTY_DOMAINS = {"https://microsoft.com", "https://github.com"}


class VersionOracle(Protocol):
    """Reports what the proprietary marketplace and the open registry publish."""

    def marketplace_version(self, extension_id: str) -> TargetVersion | None: ...

    def registry_version(self, extension_id: str) -> str | None: ...


def _as_map_list(value: object) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def parse_gallery_timestamp(value: object) -> datetime.datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        timestamp = datetime.datetime.fromisoformat(value)
    except ValueError:
        return None
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
    return timestamp.astimezone(datetime.timezone.utc)


def is_pre_release(version_info: dict[str, Any]) -> bool:
    return any(
        item.get("key") == PRE_RELEASE_PROPERTY and str(item.get("value")) == "true"
        for item in _as_map_list(version_info.get("properties", []))
    )


def latest_stable_target(extension: dict[str, Any]) -> TargetVersion | None:
    """Return the newest non-pre-release version of a gallery query result."""
    for version_info in _as_map_list(extension.get("versions", [])):
        if is_pre_release(version_info):
            continue
        version = str(version_info.get("version", ""))
        last_updated = parse_gallery_timestamp(version_info.get("lastUpdated"))
        if not version or last_updated is None:
            continue
        return TargetVersion(version=version, last_updated=last_updated)
    return None


def install_count(extension: dict[str, Any]) -> int | None:
    statistics: dict[str, object] = {}
    for item in _as_map_list(extension.get("statistics", [])):
        name = item.get("statisticName")
        if isinstance(name, str):
            statistics[name] = item.get("value")
    value = statistics.get("install")
    if isinstance(value, bool):
        return None
    try:
        return int(float(value))  # type: ignore[arg-type]
    except (OverflowError, TypeError, ValueError):
        return None


def is_verified_first_party(extension: dict[str, Any]) -> bool:
    """Return whether Microsoft or GitHub publish the extension themselves."""
    publisher = extension.get("publisher", {})
    if not isinstance(publisher, dict):
        return False
    return publisher.get("domain") in FIRST_PARTY_DOMAINS and bool(
        publisher.get("isDomainVerified")
    )


def gallery_extension_id(extension: dict[str, Any]) -> str | None:
    publisher = extension.get("publisher", {})
    publisher_name = publisher.get("publisherName") if isinstance(publisher, dict) else None
    extension_name = extension.get("extensionName")
    if not publisher_name or not extension_name:
        return None
    return f"{publisher_name}.{extension_name}"


def gallery_extensions(payload: object) -> list[dict[str, Any]]:
    """Return the extensions of a saved gallery query response.

    Accepts the full ``{"results": [{"extensions": [...]}]}`` response, a
    plain list of extensions or a single extension object.
    """
    if isinstance(payload, list):
        return _as_map_list(payload)
    if not isinstance(payload, dict):
        return []
    if "results" not in payload:
        return [payload] if gallery_extension_id(payload) else []
    extensions: list[dict[str, Any]] = []
    for result in _as_map_list(payload.get("results")):
        extensions.extend(_as_map_list(result.get("extensions")))
    return extensions


class GalleryOracle(object):
    """VersionOracle answering from saved gallery query results.

    Explicit ``marketplace_versions`` take precedence over the gallery data,
    registry versions are whatever the caller already knows.
    """

    extensions: dict[str, dict[str, Any]]
    marketplace_versions: dict[str, TargetVersion]
    registry_versions: dict[str, str]

    def extension(self, extension_id: str) -> dict[str, Any] | None:
        return self.extensions.get(extension_id.lower())

    def marketplace_version(self, extension_id: str) -> TargetVersion | None:
        if extension_id.lower() in self.marketplace_versions:
            return self.marketplace_versions[extension_id.lower()]
        extension = self.extension(extension_id)
        if extension is None:
            return None
        return latest_stable_target(extension)

    def registry_version(self, extension_id: str) -> str | None:
        return self.registry_versions.get(extension_id.lower())

    def install_count(self, extension_id: str) -> int | None:
        extension = self.extension(extension_id)
        return install_count(extension) if extension is not None else None

    def is_verified_first_party(self, extension_id: str) -> bool:
        extension = self.extension(extension_id)
        return extension is not None and is_verified_first_party(extension)

    def __init__(
        self,
        extensions: list[dict[str, Any]] | None = None,
        marketplace_versions: dict[str, TargetVersion] | None = None,
        registry_versions: dict[str, str] | None = None,
    ) -> None:
        self.extensions = {}
        for extension in extensions or []:
            extension_id = gallery_extension_id(extension)
            if extension_id:
                self.extensions[extension_id.lower()] = extension
        self.marketplace_versions = {
            key.lower(): value for key, value in (marketplace_versions or {}).items()
        }
        self.registry_versions = {
            key.lower(): value
            for key, value in (registry_versions or {}).items()
            if value
        }
