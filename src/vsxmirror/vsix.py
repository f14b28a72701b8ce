"""Read extension identity and version from manifests.

A packaged extension (``.vsix``) is a zip archive holding the source
``package.json`` under ``extension/`` plus an XML ``extension.vsixmanifest``
that records the platform the package was built for.
"""

from __future__ import annotations

import zipfile
from pathlib import Path
from xml.etree import ElementTree

import json5

from vsxmirror.exceptions import ManifestUnreadableError
from vsxmirror.models import ManifestSnapshot

VSIX_PACKAGE_JSON = "extension/package.json"
VSIX_XML_MANIFEST = "extension.vsixmanifest"
UNIVERSAL_TARGET = "universal"


def parse_package_manifest(
    text: str, target_platform: str = UNIVERSAL_TARGET
) -> ManifestSnapshot:
    try:
        manifest = json5.loads(text)
    except ValueError as exc:
        raise ManifestUnreadableError(f"Invalid package.json: {exc}") from exc
    if not isinstance(manifest, dict):
        raise ManifestUnreadableError("package.json is not an object")

    publisher = str(manifest.get("publisher") or "")
    name = str(manifest.get("name") or "")
    version = str(manifest.get("version") or "")
    if not publisher or not name or not version:
        raise ManifestUnreadableError(
            "package.json lacks one of publisher, name or version"
        )
    return ManifestSnapshot(
        identity_id=f"{publisher}.{name}",
        version=version,
        target_platform=target_platform,
    )


def _target_platform(xml_text: bytes) -> str:
    root = ElementTree.fromstring(xml_text)
    for element in root.iter():
        # the manifest uses a default namespace, so compare local names only
        if element.tag.rsplit("}", 1)[-1] == "Identity":
            return element.get("TargetPlatform") or UNIVERSAL_TARGET
    return UNIVERSAL_TARGET


def read_vsix_manifest(path: Path) -> ManifestSnapshot:
    """Return the manifest embedded in the packaged extension at *path*."""
    try:
        with zipfile.ZipFile(path, "r") as archive:
            package_json = archive.read(VSIX_PACKAGE_JSON).decode("utf-8")
            target_platform = UNIVERSAL_TARGET
            if VSIX_XML_MANIFEST in archive.namelist():
                target_platform = _target_platform(archive.read(VSIX_XML_MANIFEST))
    except (zipfile.BadZipFile, KeyError, OSError, UnicodeDecodeError) as exc:
        raise ManifestUnreadableError(f"Cannot read {path}: {exc}") from exc
    except ElementTree.ParseError as exc:
        raise ManifestUnreadableError(
            f"Invalid {VSIX_XML_MANIFEST} in {path}: {exc}"
        ) from exc
    return parse_package_manifest(package_json, target_platform=target_platform)
