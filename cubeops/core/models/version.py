"""
Semantic version tags for published images.

Only plain ``major.minor.patch`` tags take part in version discovery;
``latest``, ``base``, ``1.2`` or ``1.2.3-rc1`` are ignored.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import total_ordering

from pydantic import BaseModel, ConfigDict, Field

_SEMVER_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)$")


@total_ordering
class VersionTag(BaseModel):
    """A ``major.minor.patch`` version."""

    model_config = ConfigDict(frozen=True)

    major: int = Field(default=0, ge=0)
    minor: int = Field(default=0, ge=0)
    patch: int = Field(default=0, ge=0)

    @classmethod
    def parse(cls, text: str) -> VersionTag | None:
        """Parse ``x.y.z`` (optional leading ``v``). Returns None if not semantic."""
        m = _SEMVER_RE.match(text.strip())
        if not m:
            return None
        return cls(major=int(m.group(1)), minor=int(m.group(2)), patch=int(m.group(3)))

    def bump(self, position: str = "patch") -> VersionTag:
        """Return the next version at the given position."""
        if position == "major":
            return VersionTag(major=self.major + 1)
        if position == "minor":
            return VersionTag(major=self.major, minor=self.minor + 1)
        return VersionTag(major=self.major, minor=self.minor, patch=self.patch + 1)

    def bump_patch(self) -> VersionTag:
        return self.bump("patch")

    def _key(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, VersionTag):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def semantic_tags(tags: Iterable[str]) -> list[VersionTag]:
    """Keep only the semantic tags, sorted ascending."""
    parsed = (VersionTag.parse(t) for t in tags)
    return sorted(v for v in parsed if v is not None)


def next_version(tags: Iterable[str]) -> VersionTag:
    """Next version after the highest existing semantic tag.

    ``{1.2.3, 1.2.9, 1.3.0}`` → ``1.3.1``; no semantic tags → ``0.0.1``.
    """
    versions = semantic_tags(tags)
    if not versions:
        return VersionTag(patch=1)
    return versions[-1].bump_patch()
