from __future__ import annotations

import datetime
import enum
import logging
import re
from dataclasses import asdict, dataclass, field

import semver

from vsxmirror.models import ResolutionResult
from vsxmirror.resolver import months_before

logger: logging.Logger = logging.getLogger(__name__)

# versions like 1.71.8240911 carry a build number in the patch segment
BUILD_NUMBER_VERSION = re.compile(r"^\d{1,3}\.\d+\.\d{4,}")


class Classification(str, enum.Enum):
    UP_TO_DATE = "upToDate"
    OUTDATED = "outdated"
    UNSTABLE = "unstable"
    NOT_IN_OPEN = "notInOpen"
    NOT_IN_MS = "notInMS"


def parse_version(version: str) -> semver.Version:
    return semver.Version.parse(version, optional_minor_and_patch=True)


def classify(ms_version: str | None, open_version: str | None) -> Classification:
    """Compare the marketplace version with the one in the open registry."""
    if not ms_version:
        return Classification.NOT_IN_MS
    if not open_version:
        return Classification.NOT_IN_OPEN
    try:
        ms = parse_version(ms_version)
        ovsx = parse_version(open_version)
    except ValueError:
        logger.debug(f"Cannot compare {ms_version} with {open_version} as semver")
        if ms_version == open_version:
            return Classification.UP_TO_DATE
        return Classification.OUTDATED

    if ms.compare(ovsx) == 0:
        return Classification.UP_TO_DATE
    if BUILD_NUMBER_VERSION.match(ms_version):
        # same major.minor on both sides is as close as these versions get
        if (ms.major, ms.minor) == (ovsx.major, ovsx.minor):
            return Classification.UP_TO_DATE
        return Classification.OUTDATED
    if ms.compare(ovsx) > 0:
        return Classification.OUTDATED
    return Classification.UNSTABLE


@dataclass
class ExtensionStat:
    msInstalls: int | None
    msVersion: str | None
    openVersion: str | None = None
    daysInBetween: float | None = None


@dataclass
class PublishStats:
    """Per-run statistics, every extension sits in at most one bucket."""

    upToDate: dict[str, ExtensionStat] = field(default_factory=dict)
    outdated: dict[str, ExtensionStat] = field(default_factory=dict)
    unstable: dict[str, ExtensionStat] = field(default_factory=dict)
    notInOpen: dict[str, ExtensionStat] = field(default_factory=dict)
    notInMS: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    msPublished: dict[str, ExtensionStat] = field(default_factory=dict)
    hitMiss: dict[str, ExtensionStat] = field(default_factory=dict)
    resolutions: dict[str, dict[str, object]] = field(default_factory=dict)

    def _forget(self, extension_id: str) -> None:
        if extension_id in self.notInMS:
            self.notInMS.remove(extension_id)
        for bucket in (
            self.upToDate,
            self.outdated,
            self.unstable,
            self.notInOpen,
            self.hitMiss,
        ):
            bucket.pop(extension_id, None)

    def record(
        self,
        extension_id: str,
        *,
        ms_version: str | None,
        open_version: str | None,
        ms_installs: int | None = None,
        ms_last_updated: datetime.datetime | None = None,
        open_last_updated: datetime.datetime | None = None,
        now: datetime.datetime | None = None,
    ) -> Classification:
        days_in_between = None
        if ms_last_updated and open_last_updated:
            days_in_between = (
                open_last_updated - ms_last_updated
            ).total_seconds() / (3600 * 24)
        stat = ExtensionStat(
            msInstalls=ms_installs,
            msVersion=ms_version,
            openVersion=open_version,
            daysInBetween=days_in_between,
        )

        self._forget(extension_id)
        classification = classify(ms_version, open_version)
        if classification is Classification.NOT_IN_MS:
            self.notInMS.append(extension_id)
        else:
            getattr(self, classification.value)[extension_id] = stat

        now = now or datetime.datetime.now(datetime.timezone.utc)
        if ms_version and ms_last_updated and months_before(now, 1) <= ms_last_updated:
            self.hitMiss[extension_id] = stat
        return classification

    def mark_ms_published(
        self, extension_id: str, ms_version: str | None, ms_installs: int | None
    ) -> None:
        self.msPublished[extension_id] = ExtensionStat(
            msInstalls=ms_installs, msVersion=ms_version
        )

    def mark_up_to_date(self, extension_id: str) -> None:
        """Move an outdated extension whose latest commit is already published."""
        stat = self.outdated.pop(extension_id, None)
        if stat is not None:
            self.upToDate[extension_id] = stat

    def record_resolution(
        self,
        extension_id: str,
        result: ResolutionResult | None,
        ms_version: str | None = None,
        ms_installs: int | None = None,
    ) -> None:
        entry: dict[str, object] = {"msInstalls": ms_installs, "msVersion": ms_version}
        if result is not None:
            entry.update(result.to_dict())
        self.resolutions[extension_id] = entry

    def mark_failed(self, extension_id: str) -> None:
        if extension_id not in self.failed:
            self.failed.append(extension_id)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)
