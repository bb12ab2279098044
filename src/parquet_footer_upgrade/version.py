"""Writer-version parsing and the corrupt-statistics version gate.

Parquet files carry a free-form ``created_by`` string naming the library that
wrote them, e.g. ``parquet-mr version 1.6.0 (build 6aa21f8776625b5fa6b18059cfebe7549f2e00cb)``.
Readers use it to decide whether binary column statistics can be trusted:
parquet-mr releases before 1.8.0 wrote them with a broken sort order
(PARQUET-251). CDH repackaged a 1.5.0 base with the fix from ``cdh5.5.0`` on,
so those builds are exempt even though their numeric version is older.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Optional, Tuple, Union

TOOL_VERSION = "0.1.0"

# Written into every rewritten footer. Must parse to a semantic version
# >= FIXED_VERSION so that a second run classifies the file as current.
CREATED_BY = f"parquet-mr version 1.8.1-footer-upgrade-r0 (build {TOOL_VERSION})"

_CREATED_BY_RE = re.compile(r"(.*?)\s+version\s*(?:([^(]*?)\s*(?:\(\s*build\s*([^)]*?)\s*\))?)?")
_SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)([^-+]*)?(?:-([^+]*))?(?:\+(.*))?$")
_NUMERIC_RE = re.compile(r"\d+", re.ASCII)


class VersionParseError(ValueError):
    """The writer string does not follow ``<application> version <version>``."""


class SemanticVersionParseError(ValueError):
    pass


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _parse_identifier(part: str) -> Union[int, str]:
    if _NUMERIC_RE.fullmatch(part):
        return int(part)
    return part


def _compare_identifiers(a: Tuple[Union[int, str], ...], b: Tuple[Union[int, str], ...]) -> int:
    """Dot-separated pre-release comparison.

    Numeric identifiers compare numerically and sort before alphanumeric ones.
    When one list is a prefix of the other, the shorter one sorts first.
    """

    for x, y in zip(a, b):
        x_num = isinstance(x, int)
        y_num = isinstance(y, int)
        if x_num != y_num:
            return -1 if x_num else 1
        cmp = _cmp(x, y)
        if cmp != 0:
            return cmp
    return _cmp(len(a), len(b))


@total_ordering
@dataclass(frozen=True, eq=False)
class SemanticVersion:
    major: int
    minor: int
    patch: int
    # Text glued directly onto the patch number, e.g. the "rc1" in "1.5.0rc1".
    unknown: Optional[str] = None
    prerelease: Optional[str] = None
    build_info: Optional[str] = None

    def __post_init__(self) -> None:
        if self.major < 0 or self.minor < 0 or self.patch < 0:
            raise SemanticVersionParseError(
                f"major, minor, and patch must all be non-negative, got {self.major}.{self.minor}.{self.patch}"
            )

    @classmethod
    def parse(cls, version: str) -> "SemanticVersion":
        m = _SEMVER_RE.match(version or "")
        if not m:
            raise SemanticVersionParseError(f"{version!r} does not match format <major>.<minor>.<patch>[-pre][+build]")
        major, minor, patch, unknown, prerelease, build_info = m.groups()
        return cls(
            int(major),
            int(minor),
            int(patch),
            unknown=unknown or None,
            prerelease=prerelease,
            build_info=build_info,
        )

    @property
    def has_unknown(self) -> bool:
        return bool(self.unknown)

    @property
    def prerelease_identifiers(self) -> Optional[Tuple[Union[int, str], ...]]:
        if self.prerelease is None:
            return None
        return tuple(_parse_identifier(p) for p in self.prerelease.split("."))

    def compare(self, other: "SemanticVersion") -> int:
        for a, b in ((self.major, other.major), (self.minor, other.minor), (self.patch, other.patch)):
            cmp = _cmp(a, b)
            if cmp != 0:
                return cmp

        # A version with unparsed trailing text sorts before the plain release.
        cmp = _cmp(other.has_unknown, self.has_unknown)
        if cmp != 0:
            return cmp

        mine = self.prerelease_identifiers
        theirs = other.prerelease_identifiers
        if mine is not None:
            return _compare_identifiers(mine, theirs) if theirs is not None else -1
        if theirs is not None:
            return 1
        return 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: "SemanticVersion") -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.has_unknown, self.prerelease_identifiers))

    def __str__(self) -> str:
        s = f"{self.major}.{self.minor}.{self.patch}{self.unknown or ''}"
        if self.prerelease is not None:
            s += f"-{self.prerelease}"
        if self.build_info is not None:
            s += f"+{self.build_info}"
        return s


FIXED_VERSION = SemanticVersion(1, 8, 0)
VENDOR_FIXED_START = SemanticVersion(1, 5, 0, prerelease="cdh5.5.0")
VENDOR_FIXED_END = SemanticVersion(1, 5, 0)


@dataclass(frozen=True)
class ParsedVersion:
    application: str
    version: Optional[str]
    app_build_hash: Optional[str]
    semantic_version: Optional[SemanticVersion]

    @property
    def has_semantic_version(self) -> bool:
        return self.semantic_version is not None


def parse_created_by(created_by: Optional[str]) -> ParsedVersion:
    """Split a writer string into application, version and build hash.

    Raises VersionParseError when the string is missing or has no
    ``version`` token. A version part that is not a semantic version is not an
    error; ``semantic_version`` is left as None.
    """

    if not created_by:
        raise VersionParseError("created_by is empty")
    if not isinstance(created_by, str):
        raise VersionParseError(f"created_by is not text: {created_by!r}")

    m = _CREATED_BY_RE.fullmatch(created_by)
    if not m:
        raise VersionParseError(f"could not parse created_by: {created_by!r}")

    application, version, build_hash = m.groups()
    if not application:
        raise VersionParseError(f"application cannot be empty: {created_by!r}")

    semver: Optional[SemanticVersion] = None
    if version:
        try:
            semver = SemanticVersion.parse(version)
        except SemanticVersionParseError:
            semver = None

    return ParsedVersion(
        application=application,
        version=version or None,
        app_build_hash=build_hash or None,
        semantic_version=semver,
    )


def needs_upgrade(semver: SemanticVersion) -> bool:
    """Return True when files from this writer version carry corrupt statistics."""

    in_vendor_fixed_band = VENDOR_FIXED_START <= semver < VENDOR_FIXED_END
    return semver < FIXED_VERSION and not in_vendor_fixed_band


@dataclass(frozen=True)
class VersionVerdict:
    upgrade: bool
    reason: str
    parsed: Optional[ParsedVersion] = None


def classify(created_by: Optional[str]) -> VersionVerdict:
    """Decide whether a file written by ``created_by`` must have its footer rewritten.

    Unparseable writer strings and versions that are not semantic versions
    are treated as pre-fix writers.
    """

    try:
        parsed = parse_created_by(created_by)
    except VersionParseError as e:
        return VersionVerdict(upgrade=True, reason=f"version parse failure ({e})")

    semver = parsed.semantic_version
    if semver is None:
        return VersionVerdict(
            upgrade=True,
            reason=f"no semantic version in created_by {created_by!r}",
            parsed=parsed,
        )

    if needs_upgrade(semver):
        return VersionVerdict(upgrade=True, reason=f"writer version {semver} is affected", parsed=parsed)
    return VersionVerdict(upgrade=False, reason=f"writer version {semver} is not affected", parsed=parsed)
