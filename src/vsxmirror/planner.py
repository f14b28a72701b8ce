from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import assert_never

from vsxmirror.catalog import CatalogEntry
from vsxmirror.exceptions import RegistryInconsistencyError
from vsxmirror.marketplace import VersionOracle
from vsxmirror.models import (
    Latest,
    Matched,
    MatchedLatest,
    ReleaseAsset,
    ReleaseTag,
    ResolutionResult,
    Tag,
    TargetVersion,
)
from vsxmirror.resolver import Resolver
from vsxmirror.stats import Classification, PublishStats, parse_version
from vsxmirror.vsix import UNIVERSAL_TARGET

logger: logging.Logger = logging.getLogger(__name__)

SKIP_UP_TO_DATE = "up-to-date"
SKIP_UNSTABLE = "version in the open registry is newer than in the marketplace"
SKIP_LATEST_PUBLISHED = "very latest commit already published to the open registry"


@dataclass(frozen=True)
class BuildTarget:
    target: str = UNIVERSAL_TARGET
    asset_url: str | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BuildPlan:
    """What the isolated build and publish step has to do for one extension."""

    extension_id: str
    version: str
    targets: list[BuildTarget]
    repository: str | None = None
    ref: str | None = None
    location: str | None = None
    extension_file: str | None = None
    prepublish: str | None = None
    custom: list[str] = field(default_factory=list)
    timeout_minutes: int = 5

    @property
    def from_release_assets(self) -> bool:
        return self.ref is None


def describe_resolution(
    extension_id: str, result: ResolutionResult, on_marketplace: bool
) -> str:
    match result.resolution:
        case ReleaseAsset():
            return f"{extension_id}: resolved from release"
        case ReleaseTag(ref=ref):
            return f"{extension_id}: resolved {ref} from release tag"
        case Tag(ref=ref):
            return f"{extension_id}: resolved {ref} from tags"
        case Latest(ref=ref):
            reason = (
                "since it is not actively maintained"
                if on_marketplace
                else "since it is not published to the marketplace"
            )
            return f"{extension_id}: resolved {ref} from the very latest commit, {reason}"
        case MatchedLatest(ref=ref):
            return f"{extension_id}: resolved {ref} from the very latest commit"
        case Matched(ref=ref):
            return (
                f"{extension_id}: resolved {ref} from the latest commit "
                "on the last update date"
            )
        case _ as unreachable:
            assert_never(unreachable)


def _source_targets(entry: CatalogEntry) -> list[BuildTarget]:
    if not entry.target:
        return [BuildTarget()]
    targets: list[BuildTarget] = []
    for name, data in entry.target.items():
        env: dict[str, str] = {}
        if isinstance(data, dict) and isinstance(data.get("env"), dict):
            env = {str(key): str(value) for key, value in data["env"].items()}
        targets.append(BuildTarget(target=name, env=env))
    return targets


def _asset_targets(entry: CatalogEntry, assets: dict[str, str]) -> list[BuildTarget]:
    targets: list[BuildTarget] = []
    for name, asset_url in assets.items():
        if entry.target and name not in entry.target:
            logger.info(f"{entry.identity}: skipping, since target {name} is not included")
            continue
        targets.append(BuildTarget(target=name, asset_url=asset_url))
    return targets


def plan_build(entry: CatalogEntry, result: ResolutionResult) -> BuildPlan:
    """Turn a resolution into build instructions for *entry*."""
    common = dict(
        extension_id=entry.identity.id,
        version=result.version,
        timeout_minutes=entry.timeout_minutes,
    )
    match result.resolution:
        case ReleaseAsset(assets=assets):
            return BuildPlan(targets=_asset_targets(entry, dict(assets)), **common)
        case (
            ReleaseTag(ref=ref)
            | Tag(ref=ref)
            | Latest(ref=ref)
            | MatchedLatest(ref=ref)
            | Matched(ref=ref)
        ):
            return BuildPlan(
                targets=_source_targets(entry),
                repository=result.source_location,
                ref=ref,
                location=entry.location,
                extension_file=entry.extension_file,
                prepublish=entry.prepublish,
                custom=list(entry.custom),
                **common,
            )
        case _ as unreachable:
            assert_never(unreachable)


def skip_reason(
    result: ResolutionResult | None,
    classification: Classification,
    registry_version: str | None,
    force: bool = False,
) -> str | None:
    """Return why publishing can be skipped, ``None`` when it must run."""
    if force:
        return None
    if classification is Classification.UP_TO_DATE:
        return SKIP_UP_TO_DATE
    if classification is Classification.UNSTABLE:
        return SKIP_UNSTABLE
    if (
        result is not None
        and isinstance(result.resolution, Latest)
        and result.version == registry_version
    ):
        return SKIP_LATEST_PUBLISHED
    return None


def ensure_registry_consistency(
    extension_id: str, target: TargetVersion | None, registry_version: str | None
) -> None:
    """Fail when the open registry already holds a newer version than the marketplace."""
    if target is None or not registry_version:
        return
    try:
        marketplace = parse_version(target.version)
        registry = parse_version(registry_version)
    except ValueError:
        logger.debug(
            f"{extension_id}: cannot compare {target.version} with {registry_version}"
        )
        return
    if marketplace.compare(registry) < 0:
        raise RegistryInconsistencyError(
            f"{extension_id}: marketplace version {target.version} is older than "
            f"{registry_version} in the open registry"
        )


@dataclass(frozen=True)
class PublishDecision:
    extension_id: str
    classification: Classification
    result: ResolutionResult | None = None
    skip: str | None = None
    plan: BuildPlan | None = None


def decide_publish(
    entry: CatalogEntry,
    resolver: Resolver,
    oracle: VersionOracle,
    stats: PublishStats,
    *,
    ms_installs: int | None = None,
    force: bool = False,
) -> PublishDecision:
    """Resolve *entry* and decide whether it has to be built and published.

    The outcome is folded into *stats*. A decision without ``skip`` and
    without ``plan`` means the extension could not be resolved.
    """
    extension_id = entry.identity.id
    source = entry.source
    if source is None:
        raise ValueError(f"{extension_id} is a pinned download, nothing to resolve")

    target = oracle.marketplace_version(entry.marketplace_id)
    registry_version = oracle.registry_version(extension_id)
    ms_version = target.version if target is not None else None
    classification = stats.record(
        extension_id,
        ms_version=ms_version,
        open_version=registry_version,
        ms_installs=ms_installs,
        ms_last_updated=target.last_updated if target is not None else None,
        now=resolver.clock(),
    )

    result = resolver.resolve(entry.identity, source, target)
    stats.record_resolution(
        extension_id, result, ms_version=ms_version, ms_installs=ms_installs
    )

    reason = skip_reason(result, classification, registry_version, force=force)
    if reason is not None:
        logger.info(f"{extension_id}: skipping, since {reason}")
        if reason == SKIP_LATEST_PUBLISHED:
            stats.mark_up_to_date(extension_id)
        return PublishDecision(extension_id, classification, result, skip=reason)

    if result is None:
        logger.error(f"{extension_id}: failed to resolve")
        stats.mark_failed(extension_id)
        return PublishDecision(extension_id, classification)

    ensure_registry_consistency(extension_id, target, registry_version)
    logger.info(describe_resolution(extension_id, result, target is not None))
    return PublishDecision(
        extension_id, classification, result, plan=plan_build(entry, result)
    )
