from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Union


@dataclass(frozen=True, eq=False)
class ExtensionIdentity:
    """`namespace.name` identity, compared case-insensitively."""

    id: str

    def __post_init__(self) -> None:
        namespace, _, name = self.id.partition(".")
        if not namespace or not name:
            raise ValueError(f"Extension id must be namespace.name: {self.id!r}")

    @property
    def namespace(self) -> str:
        return self.id.split(".", 1)[0]

    @property
    def name(self) -> str:
        return self.id.split(".", 1)[1]

    @property
    def key(self) -> str:
        return self.id.lower()

    def matches(self, other_id: str) -> bool:
        return self.key == other_id.lower()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExtensionIdentity):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.id


@dataclass(frozen=True)
class ExtensionSource:
    repository_url: str
    subdirectory: str | None = None


@dataclass(frozen=True)
class TargetVersion:
    version: str
    last_updated: datetime.datetime

    def __post_init__(self) -> None:
        # naive timestamps coming from configuration are UTC
        if self.last_updated.tzinfo is None:
            object.__setattr__(
                self,
                "last_updated",
                self.last_updated.replace(tzinfo=datetime.timezone.utc),
            )


@dataclass(frozen=True)
class ManifestSnapshot:
    identity_id: str
    version: str
    target_platform: str = "universal"


@dataclass(frozen=True)
class CommitInfo:
    sha: str
    timestamp: datetime.datetime


@dataclass(frozen=True)
class ReleaseAsset:
    assets: Mapping[str, str] = field(default_factory=dict)
    kind = "releaseAsset"

    def __post_init__(self) -> None:
        object.__setattr__(self, "assets", MappingProxyType(dict(self.assets)))

    @property
    def ref(self) -> None:
        return None

    def describe(self) -> dict[str, object]:
        return dict(self.assets)


@dataclass(frozen=True)
class _RefResolution:
    ref: str

    def describe(self) -> object:
        return self.ref


@dataclass(frozen=True)
class ReleaseTag(_RefResolution):
    kind = "releaseTag"


@dataclass(frozen=True)
class Tag(_RefResolution):
    kind = "tag"


@dataclass(frozen=True)
class Latest(_RefResolution):
    kind = "latest"


@dataclass(frozen=True)
class MatchedLatest(_RefResolution):
    kind = "matchedLatest"


@dataclass(frozen=True)
class Matched(_RefResolution):
    kind = "matched"


ResolutionTag = Union[ReleaseAsset, ReleaseTag, Tag, Latest, MatchedLatest, Matched]


@dataclass(frozen=True)
class ResolutionResult:
    version: str
    resolution: ResolutionTag
    source_location: str

    def to_dict(self) -> dict[str, object]:
        return {
            "version": self.version,
            self.resolution.kind: self.resolution.describe(),
            "sourceLocation": self.source_location,
        }
