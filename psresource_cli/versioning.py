"""NuGet-style versions and version ranges.

Versions are ``major.minor.patch[.revision][-prerelease][+metadata]``.
Ranges use NuGet interval notation: ``[1.0,2.0)``, ``(,1.0]``, ``[1.2]``,
or a bare version meaning "this version or newer".
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import total_ordering

from .errors import InvalidVersionRangeError

_VERSION_RE = re.compile(
    r"^(?P<major>\d+)"
    r"(?:\.(?P<minor>\d+))?"
    r"(?:\.(?P<patch>\d+))?"
    r"(?:\.(?P<revision>\d+))?"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<metadata>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


@total_ordering
class NuGetVersion:
    """A parsed package version with release-aware ordering.

    A stable release sorts above every pre-release of the same numeric
    version. Build metadata is ignored for ordering and equality.
    """

    __slots__ = ("major", "minor", "patch", "revision", "prerelease", "metadata", "original")

    def __init__(
        self,
        major: int,
        minor: int = 0,
        patch: int = 0,
        revision: int = 0,
        prerelease: str = "",
        metadata: str = "",
        original: str | None = None,
    ):
        self.major = major
        self.minor = minor
        self.patch = patch
        self.revision = revision
        self.prerelease = prerelease
        self.metadata = metadata
        self.original = original

    @classmethod
    def try_parse(cls, text: str | None) -> NuGetVersion | None:
        """Parse a version string, returning None when it is not a version."""
        if text is None:
            return None
        match = _VERSION_RE.match(text.strip())
        if not match:
            return None
        return cls(
            major=int(match["major"]),
            minor=int(match["minor"] or 0),
            patch=int(match["patch"] or 0),
            revision=int(match["revision"] or 0),
            prerelease=match["prerelease"] or "",
            metadata=match["metadata"] or "",
            original=text.strip(),
        )

    @classmethod
    def parse(cls, text: str) -> NuGetVersion:
        version = cls.try_parse(text)
        if version is None:
            raise InvalidVersionRangeError(f"'{text}' is not a valid version")
        return version

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def release(self) -> tuple[int, int, int, int]:
        return (self.major, self.minor, self.patch, self.revision)

    def _sort_key(self) -> tuple:
        if not self.prerelease:
            return (self.release, 1, ())
        label = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part.lower()) for part in self.prerelease.split(".")
        )
        return (self.release, 0, label)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        return self._sort_key() == other._sort_key()

    def __lt__(self, other: NuGetVersion) -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __hash__(self) -> int:
        return hash(self._sort_key())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision:
            text += f".{self.revision}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        return text

    def __repr__(self) -> str:
        return f"NuGetVersion('{self}')"


class VersionRange:
    """An interval of versions, each bound optional and inclusive or exclusive."""

    __slots__ = ("min_version", "min_inclusive", "max_version", "max_inclusive", "original")

    def __init__(
        self,
        min_version: NuGetVersion | None = None,
        min_inclusive: bool = True,
        max_version: NuGetVersion | None = None,
        max_inclusive: bool = False,
        original: str | None = None,
    ):
        self.min_version = min_version
        self.min_inclusive = min_inclusive
        self.max_version = max_version
        self.max_inclusive = max_inclusive
        self.original = original

    @classmethod
    def exact(cls, version: NuGetVersion) -> VersionRange:
        return cls(version, True, version, True, original=f"[{version}]")

    @classmethod
    def parse(cls, text: str) -> VersionRange:
        """Parse NuGet interval notation.

        Raises:
            InvalidVersionRangeError: The text is not a valid range
        """
        if text is None or not text.strip():
            raise InvalidVersionRangeError("Version range cannot be empty")

        value = text.strip()
        if value == "*":
            return cls(original="*")

        if value[0] not in "[(":
            return cls(NuGetVersion.parse(value), True, None, False, original=value)

        if len(value) < 3 or value[-1] not in "])":
            raise InvalidVersionRangeError(f"'{text}' is not a valid version range")

        min_inclusive = value[0] == "["
        max_inclusive = value[-1] == "]"
        inner = value[1:-1]

        if "," not in inner:
            # [1.0] is the only single-version interval form
            if not (min_inclusive and max_inclusive):
                raise InvalidVersionRangeError(f"'{text}' is not a valid version range")
            version = NuGetVersion.parse(inner)
            return cls(version, True, version, True, original=value)

        parts = inner.split(",")
        if len(parts) != 2:
            raise InvalidVersionRangeError(f"'{text}' is not a valid version range")

        low, high = (part.strip() for part in parts)
        if not low and not high:
            raise InvalidVersionRangeError(f"'{text}' does not specify any bound")

        min_version = NuGetVersion.parse(low) if low else None
        max_version = NuGetVersion.parse(high) if high else None

        if min_version is not None and max_version is not None:
            if max_version < min_version:
                raise InvalidVersionRangeError(f"'{text}' has a maximum below its minimum")
            if max_version == min_version and not (min_inclusive and max_inclusive):
                raise InvalidVersionRangeError(f"'{text}' cannot match any version")

        return cls(min_version, min_inclusive, max_version, max_inclusive, original=value)

    @property
    def is_exact(self) -> bool:
        return (
            self.min_version is not None
            and self.min_version == self.max_version
            and self.min_inclusive
            and self.max_inclusive
        )

    def satisfies(self, version: NuGetVersion) -> bool:
        if self.min_version is not None:
            if version < self.min_version or (version == self.min_version and not self.min_inclusive):
                return False
        if self.max_version is not None:
            if version > self.max_version or (version == self.max_version and not self.max_inclusive):
                return False
        return True

    def find_best_match(self, versions: Iterable[NuGetVersion]) -> NuGetVersion | None:
        candidates = [v for v in versions if self.satisfies(v)]
        return max(candidates) if candidates else None

    def __str__(self) -> str:
        if self.original:
            return self.original
        if self.min_version is None and self.max_version is None:
            return "*"
        low = str(self.min_version) if self.min_version else ""
        high = str(self.max_version) if self.max_version else ""
        return f"{'[' if self.min_inclusive else '('}{low},{high}{']' if self.max_inclusive else ')'}"

    def __repr__(self) -> str:
        return f"VersionRange('{self}')"


ALL = VersionRange(original="*")


def parse_version_or_range(text: str | None) -> VersionRange | None:
    """Parse a caller-supplied version constraint.

    ``None`` means no constraint, ``*`` means any version, a bare version
    means exactly that version, anything else is parsed as a range.
    """
    if text is None:
        return None
    if text.strip() == "*":
        return ALL
    version = NuGetVersion.try_parse(text)
    if version is not None:
        return VersionRange.exact(version)
    return VersionRange.parse(text)


def pick_latest(versions: Iterable[NuGetVersion], version_range: VersionRange | None = None) -> NuGetVersion | None:
    """Return the newest version, optionally restricted to a range."""
    if version_range is None:
        candidates = list(versions)
        return max(candidates) if candidates else None
    return version_range.find_best_match(versions)
