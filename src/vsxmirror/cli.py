#! /bin/env python3
from __future__ import annotations

import datetime
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

import typer

from vsxmirror.catalog import (
    CatalogEntry,
    JsonMap,
    add_entry,
    diff_catalogs,
    find_source_entry,
    load_catalog,
    normalize_repository_url,
    read_catalog_json,
    validate_catalog,
    write_catalog,
)
from vsxmirror.exceptions import (
    CatalogValidationError,
    ManifestUnreadableError,
    RegistryInconsistencyError,
    SourceUnreachableError,
)
from vsxmirror.github_client import GitHubReleaseClient
from vsxmirror.marketplace import GalleryOracle, gallery_extensions
from vsxmirror.models import TargetVersion
from vsxmirror.planner import decide_publish
from vsxmirror.probe import open_source_probe
from vsxmirror.resolver import Resolver, ResolverSettings
from vsxmirror.stats import PublishStats

app: typer.Typer = typer.Typer()
logger: logging.Logger = logging.getLogger(__name__)


def _configure_logging(log_level: str) -> None:
    _log_level = getattr(logging, log_level.upper(), None)
    if not isinstance(_log_level, int):
        raise ValueError(f"Invalid log level: {log_level!r}")
    logging.basicConfig(
        level=_log_level,
        format="%(relativeCreated)d [%(levelname)s] %(message)s",
    )


def _read_catalog(catalog_path: Path) -> JsonMap:
    try:
        return read_catalog_json(catalog_path)
    except CatalogValidationError as exc:
        logger.error(f"{exc}")
        raise typer.Exit(code=1) from exc


def _find_entry(catalog_path: Path, extension_id: str) -> CatalogEntry:
    try:
        catalog = load_catalog(catalog_path)
    except CatalogValidationError as exc:
        logger.error(f"{exc}")
        raise typer.Exit(code=1) from exc
    for entry in catalog.values():
        if entry.identity.matches(extension_id):
            return entry
    raise typer.BadParameter(f"{extension_id} is not in {catalog_path}")


def _workspace_path(workspace: str) -> Path | None:
    return Path(workspace).expanduser().absolute() if workspace else None


def _target_version(ms_version: str, ms_last_updated: str) -> TargetVersion | None:
    if not ms_version:
        return None
    if not ms_last_updated:
        raise typer.BadParameter("--ms-last-updated is required with --ms-version")
    try:
        last_updated = datetime.datetime.fromisoformat(ms_last_updated)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid timestamp: {ms_last_updated!r}") from exc
    return TargetVersion(version=ms_version, last_updated=last_updated)


def _load_oracle(
    gallery: str,
    entry: CatalogEntry,
    target: TargetVersion | None,
    registry_version: str,
) -> GalleryOracle:
    extensions: list[dict[str, Any]] = []
    if gallery:
        try:
            payload = json.loads(Path(gallery).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise typer.BadParameter(f"Cannot read gallery data {gallery}: {exc}") from exc
        extensions = gallery_extensions(payload)
    return GalleryOracle(
        extensions,
        marketplace_versions={entry.marketplace_id: target} if target else None,
        registry_versions={entry.identity.id: registry_version},
    )


def _write_stats(stats_path: str, stats: PublishStats) -> None:
    if stats_path:
        Path(stats_path).write_text(
            json.dumps(stats.to_dict(), indent=2) + "\n", encoding="utf-8"
        )


@app.command()
def resolve(
    extension_id: str,
    catalog: str = "extensions.json",
    ms_version: str = "",
    ms_last_updated: str = "",
    gallery: str = "",
    registry_version: str = "",
    force: bool = False,
    stats: str = "",
    workspace: str = "",
    plan: bool = False,
    log_level: str = "info",
) -> None:
    """Resolve the source an extension should be built from.

    The marketplace version comes from --ms-version/--ms-last-updated or from
    a saved gallery query (--gallery). With --registry-version the command
    also decides whether publishing can be skipped.
    """
    _configure_logging(log_level)
    entry = _find_entry(Path(catalog), extension_id)
    if entry.source is None:
        logger.info(f"{entry.identity}: pinned download {entry.download}")
        raise typer.Exit(code=0)

    oracle = _load_oracle(
        gallery, entry, _target_version(ms_version, ms_last_updated), registry_version
    )
    publish_stats = PublishStats()
    ms_installs = oracle.install_count(entry.marketplace_id)
    if oracle.is_verified_first_party(entry.marketplace_id):
        target = oracle.marketplace_version(entry.marketplace_id)
        publish_stats.mark_ms_published(
            entry.identity.id, target.version if target else None, ms_installs
        )

    try:
        with open_source_probe(
            workspace=_workspace_path(workspace),
            github=GitHubReleaseClient(),
        ) as probe:
            resolver = Resolver(probe, settings=ResolverSettings.from_environment())
            decision = decide_publish(
                entry,
                resolver,
                oracle,
                publish_stats,
                ms_installs=ms_installs,
                force=force,
            )
    except SourceUnreachableError as exc:
        logger.error(f"{entry.identity}: {exc}")
        publish_stats.mark_failed(entry.identity.id)
        _write_stats(stats, publish_stats)
        raise typer.Exit(code=2) from exc
    except RegistryInconsistencyError as exc:
        logger.error(f"{exc}")
        publish_stats.mark_failed(entry.identity.id)
        _write_stats(stats, publish_stats)
        raise typer.Exit(code=1) from exc
    _write_stats(stats, publish_stats)

    if decision.skip is not None:
        output: dict[str, object] = {"skip": decision.skip}
        if decision.result is not None:
            output.update(decision.result.to_dict())
        typer.echo(json.dumps(output, indent=2))
        return
    if decision.result is None or decision.plan is None:
        raise typer.Exit(code=1)

    output = asdict(decision.plan) if plan else decision.result.to_dict()
    typer.echo(json.dumps(output, indent=2))


@app.command()
def validate(catalog: str = "extensions.json", log_level: str = "info") -> None:
    """Validate the extension catalog."""
    _configure_logging(log_level)
    try:
        warnings = validate_catalog(read_catalog_json(Path(catalog)))
    except CatalogValidationError as exc:
        logger.error(f"{exc}")
        raise typer.Exit(code=1) from exc
    for warning in warnings:
        logger.warning(warning)
    logger.info(f"{catalog} is valid.")


@app.command()
def diff(
    original: str, current: str = "extensions.json", log_level: str = "info"
) -> None:
    """Print the ids added or changed between two catalogs."""
    _configure_logging(log_level)
    changes = diff_catalogs(
        _read_catalog(Path(original)), _read_catalog(Path(current))
    )
    typer.echo(",".join(changes) or ",")


@app.command()
def add(
    repository: str,
    location: str = "",
    extension_id: str = "",
    catalog: str = "extensions.json",
    workspace: str = "",
    log_level: str = "info",
) -> None:
    """Add the extension built from *repository* to the catalog.

    The id is read from the package.json at the repository's HEAD, an
    explicit --extension-id must agree with it.
    """
    _configure_logging(log_level)
    catalog_path = Path(catalog)
    repository = normalize_repository_url(repository)
    subdirectory = location.strip("/") if location.strip("/") not in ("", ".") else None

    raw = _read_catalog(catalog_path)
    existing = find_source_entry(raw, repository, subdirectory)
    if existing is not None:
        logger.error(f"[SKIPPED] {repository} is already in the catalog as {existing}")
        raise typer.Exit(code=1)

    try:
        with open_source_probe(workspace=_workspace_path(workspace)) as probe:
            manifest = probe.read_manifest_at(repository, "HEAD", subdirectory)
    except SourceUnreachableError as exc:
        logger.error(f"{exc}")
        raise typer.Exit(code=2) from exc
    except ManifestUnreadableError as exc:
        logger.error(f"[FAIL] Could not add {repository}: {exc}")
        raise typer.Exit(code=1) from exc

    if extension_id and extension_id.lower() != manifest.identity_id.lower():
        logger.error(
            f"[FAIL] {repository} declares {manifest.identity_id}, not {extension_id}"
        )
        raise typer.Exit(code=1)

    data: dict[str, object] = {"repository": repository}
    if subdirectory:
        data["location"] = subdirectory
    try:
        updated = add_entry(raw, manifest.identity_id, data)
    except ValueError as exc:
        logger.error(f"{exc}")
        raise typer.Exit(code=1) from exc
    write_catalog(catalog_path, updated)
    logger.info(f"[OK] Successfully added new extension: {manifest.identity_id}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
