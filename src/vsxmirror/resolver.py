"""Resolve which source artifact corresponds to a marketplace version.

Nothing maps a marketplace version to a release, tag or commit of the
source repository, so the resolver tries several signals in decreasing
order of confidence and returns the first that fits:

1. assets of the latest release whose embedded manifest carries the
   marketplace version,
2. the tag of the latest release,
3. the most recent repository tags,
4. the latest commit of an unmaintained repository,
5. the latest commit when the extension is not on the marketplace at all,
6. commits around the date the marketplace version was last updated.

Marketplace versions sometimes carry a suffix the source manifest lacks,
so a resolved version matches when the target version *contains* it.
"""

from __future__ import annotations

import calendar
import datetime
import logging
import os
from dataclasses import dataclass, field
from typing import Callable

from vsxmirror import internal_config
from vsxmirror.exceptions import (
    ConfigurationError,
    DownloadFailedError,
    IdentityMismatchError,
    ManifestUnreadableError,
)
from vsxmirror.models import (
    ExtensionIdentity,
    ExtensionSource,
    Latest,
    ManifestSnapshot,
    Matched,
    MatchedLatest,
    ReleaseAsset,
    ReleaseTag,
    ResolutionResult,
    Tag,
    TargetVersion,
)
from vsxmirror.probe import SourceProbe, validate_repository_url

logger: logging.Logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {value}")
    return value


@dataclass(frozen=True)
class ResolverSettings:
    unmaintained_after_months: int = internal_config.UNMAINTAINED_AFTER_MONTHS
    commit_search_limit: int = internal_config.COMMIT_SEARCH_LIMIT
    commit_search_pad: datetime.timedelta = field(
        default=internal_config.COMMIT_SEARCH_PAD
    )
    recent_tag_limit: int = internal_config.RECENT_TAG_LIMIT

    @classmethod
    def from_environment(cls) -> ResolverSettings:
        default = cls()
        pad_hours = _env_int(
            "VSXMIRROR_COMMIT_SEARCH_PAD_HOURS",
            int(default.commit_search_pad.total_seconds() // 3600),
        )
        return cls(
            unmaintained_after_months=_env_int(
                "VSXMIRROR_UNMAINTAINED_MONTHS", default.unmaintained_after_months
            ),
            commit_search_limit=_env_int(
                "VSXMIRROR_COMMIT_SEARCH_LIMIT", default.commit_search_limit
            ),
            commit_search_pad=datetime.timedelta(hours=pad_hours),
            recent_tag_limit=_env_int(
                "VSXMIRROR_RECENT_TAG_LIMIT", default.recent_tag_limit
            ),
        )


def version_matches(target_version: str, resolved_version: str) -> bool:
    """Return whether *resolved_version* is contained in *target_version*."""
    return bool(resolved_version) and resolved_version in target_version


def months_before(moment: datetime.datetime, months: int) -> datetime.datetime:
    """Step back calendar months, clamping the day to the shorter month."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def commit_search_cutoff(
    last_updated: datetime.datetime, pad: datetime.timedelta
) -> datetime.datetime:
    """Pad *last_updated* and extend it to the end of that UTC day."""
    padded = (last_updated + pad).astimezone(datetime.timezone.utc)
    return padded.replace(hour=23, minute=59, second=59, microsecond=999999)


class Resolver(object):
    """Pick the release asset, tag or commit to build an extension from."""

    probe: SourceProbe
    settings: ResolverSettings

    def __init__(
        self,
        probe: SourceProbe,
        settings: ResolverSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.probe = probe
        self.settings = settings or ResolverSettings()
        self.clock = clock

    def resolve(
        self,
        identity: ExtensionIdentity,
        source: ExtensionSource,
        target: TargetVersion | None = None,
    ) -> ResolutionResult | None:
        """Resolve *identity* to a source location, ``None`` when nothing fits.

        Only ``SourceUnreachableError`` escapes: every unreadable manifest
        just moves the search on to the next candidate.
        """
        repository_url = source.repository_url
        validate_repository_url(repository_url)

        if target is not None:
            result = self._from_release_assets(identity, source, target)
            if result is not None:
                return result

        latest_commits = self.probe.list_commits(repository_url, limit=1)
        latest_commit = latest_commits[0] if latest_commits else None

        if target is None:
            if latest_commit is None:
                logger.info(f"{identity}: repository has no commits")
                return None
            version = self._version_at(identity, source, latest_commit.sha)
            if version is None:
                return None
            return ResolutionResult(version, Latest(latest_commit.sha), repository_url)

        for resolve_step in (self._from_release_tag, self._from_recent_tags):
            result = resolve_step(identity, source, target)
            if result is not None:
                return result

        if latest_commit is not None and self._is_unmaintained(latest_commit.timestamp):
            version = self._version_at(identity, source, latest_commit.sha)
            if version is not None:
                logger.info(
                    f"{identity}: latest commit {latest_commit.sha} is older than "
                    f"{self.settings.unmaintained_after_months} months, using it"
                )
                return ResolutionResult(
                    version, Latest(latest_commit.sha), repository_url
                )

        return self._from_matched_commits(
            identity,
            source,
            target,
            latest_commit.sha if latest_commit else None,
        )

    def _read_manifest(
        self, identity: ExtensionIdentity, source: ExtensionSource, ref: str
    ) -> ManifestSnapshot:
        snapshot = self.probe.read_manifest_at(
            source.repository_url, ref, source.subdirectory
        )
        if not identity.matches(snapshot.identity_id):
            raise IdentityMismatchError(
                f"{ref} declares {snapshot.identity_id}, expected {identity}"
            )
        return snapshot

    def _version_at(
        self, identity: ExtensionIdentity, source: ExtensionSource, ref: str
    ) -> str | None:
        try:
            return self._read_manifest(identity, source, ref).version
        except ManifestUnreadableError as exc:
            logger.debug(f"{identity}: no version at {ref}: {exc}")
            return None

    def _from_release_assets(
        self,
        identity: ExtensionIdentity,
        source: ExtensionSource,
        target: TargetVersion,
    ) -> ResolutionResult | None:
        matched: dict[str, str] = {}
        for asset_url in self.probe.latest_release_assets(source.repository_url):
            try:
                snapshot = self.probe.download_and_read_manifest(asset_url)
            except (DownloadFailedError, ManifestUnreadableError) as exc:
                logger.warning(f"{identity}: skipping release asset {asset_url}: {exc}")
                continue
            if snapshot.version != target.version or not identity.matches(
                snapshot.identity_id
            ):
                logger.debug(
                    f"{identity}: release asset {asset_url} holds "
                    f"{snapshot.identity_id}@{snapshot.version}"
                )
                continue
            if snapshot.target_platform in matched:
                logger.warning(
                    f"{identity}: several release assets for "
                    f"{snapshot.target_platform}, keeping {matched[snapshot.target_platform]}"
                )
                continue
            matched[snapshot.target_platform] = asset_url

        if not matched:
            return None
        return ResolutionResult(
            target.version, ReleaseAsset(matched), source.repository_url
        )

    def _from_release_tag(
        self,
        identity: ExtensionIdentity,
        source: ExtensionSource,
        target: TargetVersion,
    ) -> ResolutionResult | None:
        release_tag = self.probe.latest_release_tag(source.repository_url)
        if not release_tag:
            return None
        version = self._version_at(identity, source, release_tag)
        if version is None or not version_matches(target.version, version):
            return None
        return ResolutionResult(
            target.version, ReleaseTag(release_tag), source.repository_url
        )

    def _from_recent_tags(
        self,
        identity: ExtensionIdentity,
        source: ExtensionSource,
        target: TargetVersion,
    ) -> ResolutionResult | None:
        tags = self.probe.recent_tags(
            source.repository_url, self.settings.recent_tag_limit
        )
        for tag in tags[: self.settings.recent_tag_limit]:
            version = self._version_at(identity, source, tag)
            if version is not None and version_matches(target.version, version):
                return ResolutionResult(target.version, Tag(tag), source.repository_url)
        return None

    def _is_unmaintained(self, last_commit: datetime.datetime) -> bool:
        now = self.clock()
        months = self.settings.unmaintained_after_months
        # a calendar month can be as short as 28 days, never count fewer than 30
        threshold = min(
            months_before(now, months), now - datetime.timedelta(days=30 * months)
        )
        return threshold > last_commit

    def _from_matched_commits(
        self,
        identity: ExtensionIdentity,
        source: ExtensionSource,
        target: TargetVersion,
        latest_sha: str | None,
    ) -> ResolutionResult | None:
        cutoff = commit_search_cutoff(
            target.last_updated, self.settings.commit_search_pad
        )
        commits = [
            commit
            for commit in self.probe.list_commits(
                source.repository_url,
                until=cutoff,
                limit=self.settings.commit_search_limit,
            )
            if commit.timestamp <= cutoff
        ][: self.settings.commit_search_limit]

        fallback: ResolutionResult | None = None
        for index, commit in enumerate(commits):
            version = self._version_at(identity, source, commit.sha)
            if version is None:
                continue
            if version_matches(target.version, version):
                return ResolutionResult(
                    target.version, Matched(commit.sha), source.repository_url
                )
            if index == 0:
                fallback = ResolutionResult(
                    version, MatchedLatest(commit.sha), source.repository_url
                )
                if commit.sha == latest_sha:
                    return fallback

        if fallback is None:
            logger.info(
                f"{identity}: no commit until {cutoff.isoformat()} matches "
                f"{target.version}"
            )
        return fallback
