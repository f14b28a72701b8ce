from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

# for parsing extensions.json (if it includes comments etc.)
import json5

from vsxmirror.exceptions import CatalogValidationError
from vsxmirror.internal_config import DEFAULT_TIMEOUT_MINUTES
from vsxmirror.models import ExtensionIdentity, ExtensionSource

JsonMap = dict[str, object]
Catalog = dict[str, "CatalogEntry"]

logger: logging.Logger = logging.getLogger(__name__)

# properties that only make sense when building from a repository
SOURCE_ONLY_PROPERTIES = ("repository", "checkout", "prepublish", "location", "extensionFile")


def _as_string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _as_map(value: object) -> JsonMap:
    if not isinstance(value, dict):
        return {}
    return cast(JsonMap, value)


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def parse_timeout(value: object) -> int:
    """Return the per-extension timeout in minutes, 5 unless a whole number is set."""
    if isinstance(value, bool):
        return DEFAULT_TIMEOUT_MINUTES
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return DEFAULT_TIMEOUT_MINUTES


@dataclass(frozen=True)
class CatalogEntry:
    identity: ExtensionIdentity
    repository: str | None = None
    location: str | None = None
    checkout: str | None = None
    prepublish: str | None = None
    download: str | None = None
    extension_file: str | None = None
    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES
    target: JsonMap = field(default_factory=dict)
    custom: list[str] = field(default_factory=list)
    ms_marketplace_id_override: str | None = None
    raw: JsonMap = field(default_factory=dict, compare=False, repr=False)

    @property
    def source(self) -> ExtensionSource | None:
        """Where the manifest lives, ``None`` for pinned downloads."""
        if self.download or not self.repository:
            return None
        location = self.location if self.location not in (None, ".") else None
        return ExtensionSource(repository_url=self.repository, subdirectory=location)

    @property
    def marketplace_id(self) -> str:
        return self.ms_marketplace_id_override or self.identity.id

    @classmethod
    def from_json(cls, extension_id: str, data: JsonMap) -> CatalogEntry:
        return cls(
            identity=ExtensionIdentity(extension_id),
            repository=_optional_str(data.get("repository")),
            location=_optional_str(data.get("location")),
            checkout=_optional_str(data.get("checkout")),
            prepublish=_optional_str(data.get("prepublish")),
            download=_optional_str(data.get("download")),
            extension_file=_optional_str(data.get("extensionFile")),
            timeout_minutes=parse_timeout(data.get("timeout")),
            target=_as_map(data.get("target")),
            custom=_as_string_list(data.get("custom")),
            ms_marketplace_id_override=_optional_str(
                data.get("msMarketplaceIdOverride")
            ),
            raw=dict(data),
        )


def validate_catalog(raw: JsonMap) -> list[str]:
    """Check raw catalog data and return warnings about ignored properties."""
    warnings: list[str] = []
    for extension_id, data in raw.items():
        if extension_id == "$schema":
            continue
        if not isinstance(data, dict):
            raise CatalogValidationError(f"Entry {extension_id} is not an object")
        try:
            ExtensionIdentity(extension_id)
        except ValueError as exc:
            raise CatalogValidationError(str(exc)) from exc

        if data.get("download"):
            for prop in SOURCE_ONLY_PROPERTIES:
                if data.get(prop):
                    warnings.append(
                        f"{extension_id}: ignoring `{prop}` property because "
                        "`download` was given."
                    )
        elif not data.get("repository"):
            raise CatalogValidationError(
                f"Extension {extension_id} has neither 'repository' nor 'download'."
            )
    return warnings


def parse_catalog(raw: JsonMap) -> Catalog:
    for warning in validate_catalog(raw):
        logger.warning(warning)
    return {
        extension_id: CatalogEntry.from_json(extension_id, cast(JsonMap, data))
        for extension_id, data in raw.items()
        if extension_id != "$schema"
    }


def read_catalog_json(path: Path) -> JsonMap:
    try:
        raw = json5.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise CatalogValidationError(f"Cannot parse {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise CatalogValidationError(f"{path} must contain an object")
    return cast(JsonMap, raw)


def load_catalog(path: Path) -> Catalog:
    return parse_catalog(read_catalog_json(path))


def diff_catalogs(original: JsonMap, current: JsonMap) -> list[str]:
    """Return ids that are new in *current* or differ from *original*."""
    changes: list[str] = []
    for extension_id, data in current.items():
        if extension_id == "$schema":
            continue
        if extension_id not in original or original[extension_id] != data:
            changes.append(extension_id)
    return changes


def normalize_repository_url(url: str) -> str:
    """Drop a trailing ``.git`` and slashes from *url*."""
    url = url.strip().rstrip("/")
    return url.removesuffix(".git").rstrip("/")


def _normalize_location(location: object) -> str | None:
    if not isinstance(location, str) or location.strip("/") in ("", "."):
        return None
    return location.strip("/")


def find_source_entry(
    raw: JsonMap, repository: str, location: str | None = None
) -> str | None:
    """Return the id already built from *repository* at *location*, if any."""
    wanted = normalize_repository_url(repository).lower()
    wanted_location = _normalize_location(location)
    for extension_id, data in raw.items():
        if extension_id == "$schema" or not isinstance(data, dict):
            continue
        existing = data.get("repository")
        if not isinstance(existing, str):
            continue
        if (
            normalize_repository_url(existing).lower() == wanted
            and _normalize_location(data.get("location")) == wanted_location
        ):
            return extension_id
    return None


def add_entry(raw: JsonMap, extension_id: str, data: JsonMap) -> JsonMap:
    """Return a copy of *raw* with the entry added, ids sorted case-insensitively."""
    ExtensionIdentity(extension_id)
    if any(
        key.lower() == extension_id.lower() for key in raw if key != "$schema"
    ):
        raise CatalogValidationError(f"{extension_id} is already in the catalog")

    entries = {key: value for key, value in raw.items() if key != "$schema"}
    entries[extension_id] = data
    result: JsonMap = {}
    if "$schema" in raw:
        result["$schema"] = raw["$schema"]
    for key in sorted(entries, key=str.lower):
        result[key] = entries[key]
    validate_catalog(result)
    return result


def write_catalog(path: Path, raw: JsonMap) -> None:
    path.write_text(json.dumps(raw, indent=2) + "\n", encoding="utf-8")
