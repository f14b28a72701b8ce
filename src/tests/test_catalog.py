from __future__ import annotations

import json
from pathlib import Path

import pytest

from vsxmirror.catalog import (
    CatalogEntry,
    add_entry,
    diff_catalogs,
    find_source_entry,
    load_catalog,
    normalize_repository_url,
    parse_timeout,
    read_catalog_json,
    validate_catalog,
    write_catalog,
)
from vsxmirror.exceptions import CatalogValidationError
from vsxmirror.models import ExtensionSource


def test_entry_from_json_reads_camel_case_properties() -> None:
    entry = CatalogEntry.from_json(
        "pub.ext",
        {
            "repository": "https://github.com/pub/ext",
            "location": "packages/ext",
            "prepublish": "npm run build",
            "extensionFile": "dist/ext.vsix",
            "timeout": 15,
            "target": {"linux-x64": {"env": {"ARCH": "x64"}}},
            "custom": ["npm run package", 3],
            "msMarketplaceIdOverride": "Pub.Ext",
        },
    )

    assert entry.source == ExtensionSource(
        "https://github.com/pub/ext", subdirectory="packages/ext"
    )
    assert entry.extension_file == "dist/ext.vsix"
    assert entry.timeout_minutes == 15
    assert entry.custom == ["npm run package"]
    assert entry.marketplace_id == "Pub.Ext"
    assert entry.raw["timeout"] == 15


def test_entry_source_handles_root_location_and_downloads() -> None:
    root = CatalogEntry.from_json(
        "pub.ext", {"repository": "https://github.com/pub/ext", "location": "."}
    )
    pinned = CatalogEntry.from_json(
        "pub.ext",
        {"repository": "https://github.com/pub/ext", "download": "https://x/ext.vsix"},
    )

    assert root.source == ExtensionSource("https://github.com/pub/ext")
    assert root.marketplace_id == "pub.ext"
    assert pinned.source is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, 5), (10, 10), (7.0, 7), ("12", 12), ("soon", 5), (True, 5), (2.5, 5)],
)
def test_parse_timeout(value: object, expected: int) -> None:
    assert parse_timeout(value) == expected


def test_validate_catalog_warns_about_ignored_source_properties() -> None:
    warnings = validate_catalog(
        {
            "$schema": "./extensions-schema.json",
            "pub.ext": {
                "download": "https://x/ext.vsix",
                "repository": "https://github.com/pub/ext",
                "prepublish": "npm ci",
            },
            "pub.other": {"repository": "https://github.com/pub/other"},
        }
    )

    assert warnings == [
        "pub.ext: ignoring `repository` property because `download` was given.",
        "pub.ext: ignoring `prepublish` property because `download` was given.",
    ]


@pytest.mark.parametrize(
    "raw",
    [
        {"pub.ext": {}},
        {"pub.ext": "https://github.com/pub/ext"},
        {"noseparator": {"repository": "https://github.com/pub/ext"}},
    ],
)
def test_validate_catalog_rejects_invalid_entries(raw: dict) -> None:
    with pytest.raises(CatalogValidationError):
        validate_catalog(raw)


def test_load_catalog_accepts_comments(tmp_path: Path) -> None:
    path = tmp_path / "extensions.json"
    path.write_text(
        """{
  "$schema": "./extensions-schema.json",
  // built from source
  "pub.ext": {"repository": "https://github.com/pub/ext"},
}
"""
    )

    catalog = load_catalog(path)

    assert list(catalog) == ["pub.ext"]
    assert catalog["pub.ext"].repository == "https://github.com/pub/ext"


def test_read_catalog_json_rejects_garbage(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{")
    listing = tmp_path / "list.json"
    listing.write_text("[]")

    for path in (broken, listing):
        with pytest.raises(CatalogValidationError):
            read_catalog_json(path)


def test_diff_catalogs_reports_added_and_changed_ids() -> None:
    original = {
        "$schema": "a",
        "pub.same": {"repository": "r"},
        "pub.changed": {"repository": "r"},
        "pub.removed": {"repository": "r"},
    }
    current = {
        "$schema": "b",
        "pub.same": {"repository": "r"},
        "pub.changed": {"repository": "r", "location": "x"},
        "pub.added": {"repository": "r"},
    }

    assert diff_catalogs(original, current) == ["pub.changed", "pub.added"]


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/pub/ext",
        "https://github.com/pub/ext.git",
        "https://github.com/pub/ext.git/",
        " https://github.com/pub/ext// ",
    ],
)
def test_normalize_repository_url(url: str) -> None:
    assert normalize_repository_url(url) == "https://github.com/pub/ext"


def test_find_source_entry_matches_repository_and_location() -> None:
    raw = {
        "$schema": "./extensions-schema.json",
        "pub.ext": {"repository": "https://github.com/pub/ext.git"},
        "pub.sub": {"repository": "https://github.com/pub/ext", "location": "/sub/"},
        "pub.pinned": {"download": "https://x/pinned.vsix"},
    }

    assert find_source_entry(raw, "https://GitHub.com/Pub/Ext") == "pub.ext"
    assert find_source_entry(raw, "https://github.com/pub/ext", ".") == "pub.ext"
    assert find_source_entry(raw, "https://github.com/pub/ext", "sub") == "pub.sub"
    assert find_source_entry(raw, "https://github.com/pub/ext", "other") is None
    assert find_source_entry(raw, "https://github.com/pub/new") is None

def test_add_entry_sorts_case_insensitively_and_keeps_schema() -> None:
    raw = {
        "$schema": "./extensions-schema.json",
        "zed.ext": {"repository": "https://github.com/zed/ext"},
        "Alpha.ext": {"repository": "https://github.com/alpha/ext"},
    }

    updated = add_entry(raw, "beta.ext", {"repository": "https://github.com/beta/ext"})

    assert list(updated) == ["$schema", "Alpha.ext", "beta.ext", "zed.ext"]
    assert "beta.ext" not in raw


def test_add_entry_rejects_duplicates_and_incomplete_entries() -> None:
    raw = {"pub.ext": {"repository": "https://github.com/pub/ext"}}

    with pytest.raises(CatalogValidationError, match="already"):
        add_entry(raw, "PUB.EXT", {"repository": "https://github.com/pub/ext"})
    with pytest.raises(CatalogValidationError):
        add_entry(raw, "pub.other", {})
    with pytest.raises(ValueError):
        add_entry(raw, "noseparator", {"repository": "https://github.com/pub/x"})


def test_write_catalog_uses_two_space_indent(tmp_path: Path) -> None:
    path = tmp_path / "extensions.json"
    raw = {"pub.ext": {"repository": "https://github.com/pub/ext"}}

    write_catalog(path, raw)

    text = path.read_text()
    assert text.endswith("}\n")
    assert '\n  "pub.ext": {' in text
    assert json.loads(text) == raw
