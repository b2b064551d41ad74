"""
npm-flavoured semantic versioning: versions, ranges and range intersection.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set, Tuple


class InvalidVersion(ValueError):
    """Raised when a string is not a semantic version."""


class InvalidRange(ValueError):
    """Raised when a string is not an npm version range."""


_IDENT = r"[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*"

_VERSION_RE = re.compile(
    rf"^\s*[v=]*\s*(\d+)\.(\d+)\.(\d+)(?:-({_IDENT}))?(?:\+{_IDENT})?\s*$"
)

_PARTIAL_RE = re.compile(
    r"^[v=]*(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*])"
    rf"(?:\.(?P<patch>\d+|[xX*])(?:-(?P<pre>{_IDENT}))?(?:\+{_IDENT})?)?)?$"
)

_OPERATOR_RE = re.compile(r"^(\^|~>?|[<>]=?|=)?\s*(.*)$")
_OPERATOR_SPACING_RE = re.compile(r"(\^|~>?|[<>]=?|=)\s+")
_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")
_PROTOCOL_PREFIX_RE = re.compile(r"^(?:npm:(?:@?[^@\s]+)@|workspace:)")


def _prerelease_key(prerelease: Tuple[str, ...]) -> tuple:
    if not prerelease:
        return (1,)
    parts = []
    for ident in prerelease:
        if ident.isdigit():
            parts.append((0, int(ident), ""))
        else:
            parts.append((1, 0, ident))
    return (0, tuple(parts))


@functools.total_ordering
@dataclass(frozen=True)
class SemVer:
    """A parsed semantic version. Build metadata is dropped."""

    major: int
    minor: int
    patch: int
    prerelease: Tuple[str, ...] = ()

    @property
    def key(self) -> tuple:
        return (self.major, self.minor, self.patch, _prerelease_key(self.prerelease))

    @property
    def release(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __lt__(self, other: "SemVer") -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.key < other.key

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        return text


def parse_version(value: str) -> SemVer:
    """Parse a concrete version, tolerating a leading ``v`` or ``=``."""
    if not isinstance(value, str):
        raise InvalidVersion(f"Invalid version: {value!r}")
    match = _VERSION_RE.match(value)
    if not match:
        raise InvalidVersion(f"Invalid version: {value!r}")
    major, minor, patch, pre = match.groups()
    prerelease = tuple(pre.split(".")) if pre else ()
    return SemVer(int(major), int(minor), int(patch), prerelease)


def npm_semver_key(value: str) -> Optional[tuple]:
    """Sort key for npm versions, or None when the version is invalid."""
    try:
        return parse_version(value).key
    except InvalidVersion:
        return None


@dataclass(frozen=True)
class Comparator:
    """A primitive ``<op><version>`` constraint."""

    op: str
    version: SemVer

    def test(self, version: SemVer) -> bool:
        if self.op == "<":
            return version < self.version
        if self.op == "<=":
            return version <= self.version
        if self.op == ">":
            return version > self.version
        if self.op == ">=":
            return version >= self.version
        return version == self.version

    def __str__(self) -> str:
        op = "" if self.op == "=" else self.op
        return f"{op}{self.version}"


ComparatorSet = Tuple[Comparator, ...]


@dataclass(frozen=True)
class _Partial:
    major: Optional[int]
    minor: Optional[int]
    patch: Optional[int]
    prerelease: Tuple[str, ...] = ()

    def floor(self) -> SemVer:
        return SemVer(self.major or 0, self.minor or 0, self.patch or 0, self.prerelease)


def _upper(major: int, minor: int = 0, patch: int = 0) -> SemVer:
    # "<X.Y.Z-0" excludes every prerelease of X.Y.Z as well.
    return SemVer(major, minor, patch, ("0",))


def _parse_partial(text: str, source: str) -> _Partial:
    match = _PARTIAL_RE.match(text)
    if not match:
        raise InvalidRange(f"Invalid range: {source!r}")

    def number(group: str) -> Optional[int]:
        value = match.group(group)
        if value is None or value in ("x", "X", "*"):
            return None
        return int(value)

    major = number("major")
    minor = number("minor") if major is not None else None
    patch = number("patch") if minor is not None else None
    pre = match.group("pre") if patch is not None else None
    return _Partial(major, minor, patch, tuple(pre.split(".")) if pre else ())


def _xrange(p: _Partial) -> List[Comparator]:
    if p.major is None:
        return []
    if p.minor is None:
        return [Comparator(">=", p.floor()), Comparator("<", _upper(p.major + 1))]
    if p.patch is None:
        return [Comparator(">=", p.floor()), Comparator("<", _upper(p.major, p.minor + 1))]
    return [Comparator("=", p.floor())]


def _tilde(p: _Partial) -> List[Comparator]:
    if p.major is None:
        return []
    if p.minor is None:
        return [Comparator(">=", p.floor()), Comparator("<", _upper(p.major + 1))]
    return [Comparator(">=", p.floor()), Comparator("<", _upper(p.major, p.minor + 1))]


def _caret(p: _Partial) -> List[Comparator]:
    if p.major is None:
        return []
    lower = Comparator(">=", p.floor())
    if p.minor is None:
        return [lower, Comparator("<", _upper(p.major + 1))]
    if p.patch is None:
        if p.major == 0:
            return [lower, Comparator("<", _upper(0, p.minor + 1))]
        return [lower, Comparator("<", _upper(p.major + 1))]
    if p.major > 0:
        return [lower, Comparator("<", _upper(p.major + 1))]
    if p.minor > 0:
        return [lower, Comparator("<", _upper(0, p.minor + 1))]
    return [lower, Comparator("<", _upper(0, 0, p.patch + 1))]


def _primitive(op: str, p: _Partial) -> List[Comparator]:
    if p.major is None:
        if op in ("<", ">"):
            return [Comparator("<", _upper(0))]
        return []
    if op == ">":
        if p.minor is None:
            return [Comparator(">=", SemVer(p.major + 1, 0, 0))]
        if p.patch is None:
            return [Comparator(">=", SemVer(p.major, p.minor + 1, 0))]
        return [Comparator(">", p.floor())]
    if op == ">=":
        return [Comparator(">=", p.floor())]
    if op == "<":
        if p.minor is None:
            return [Comparator("<", _upper(p.major))]
        if p.patch is None:
            return [Comparator("<", _upper(p.major, p.minor))]
        return [Comparator("<", p.floor())]
    # "<="
    if p.minor is None:
        return [Comparator("<", _upper(p.major + 1))]
    if p.patch is None:
        return [Comparator("<", _upper(p.major, p.minor + 1))]
    return [Comparator("<=", p.floor())]


def _desugar(token: str, source: str) -> List[Comparator]:
    match = _OPERATOR_RE.match(token)
    op, rest = match.group(1) or "", match.group(2)
    partial = _parse_partial(rest, source)
    if op == "^":
        return _caret(partial)
    if op in ("~", "~>"):
        return _tilde(partial)
    if op in ("", "="):
        return _xrange(partial)
    return _primitive(op, partial)


def _hyphen(low: str, high: str, source: str) -> List[Comparator]:
    comparators: List[Comparator] = []
    lower = _parse_partial(low, source)
    if lower.major is not None:
        comparators.append(Comparator(">=", lower.floor()))
    upper = _parse_partial(high, source)
    if upper.major is None:
        return comparators
    if upper.minor is None:
        comparators.append(Comparator("<", _upper(upper.major + 1)))
    elif upper.patch is None:
        comparators.append(Comparator("<", _upper(upper.major, upper.minor + 1)))
    else:
        comparators.append(Comparator("<=", upper.floor()))
    return comparators


@dataclass(frozen=True)
class VersionRange:
    """An OR-combination of comparator sets."""

    raw: str
    sets: Tuple[ComparatorSet, ...]

    def test(self, version: SemVer) -> bool:
        return any(_set_matches(cset, version) for cset in self.sets)

    def intervals(self) -> List["Interval"]:
        result = []
        for cset in self.sets:
            interval = Interval.from_comparators(cset)
            if not interval.is_empty:
                result.append(interval)
        return result


def _set_matches(cset: ComparatorSet, version: SemVer) -> bool:
    if not all(comparator.test(version) for comparator in cset):
        return False
    if not version.prerelease:
        return True
    # Prereleases only match a set that names a prerelease of the same release.
    return any(
        comparator.version.prerelease and comparator.version.release == version.release
        for comparator in cset
    )


def parse_range(text: str) -> VersionRange:
    """Parse an npm range such as ``^1.2.0 || >=2.1 <3``."""
    if not isinstance(text, str):
        raise InvalidRange(f"Invalid range: {text!r}")
    source = text
    stripped = _PROTOCOL_PREFIX_RE.sub("", text.strip())

    sets: List[ComparatorSet] = []
    for part in stripped.split("||"):
        part = part.strip()
        hyphen = _HYPHEN_RE.match(part)
        if hyphen:
            sets.append(tuple(_hyphen(hyphen.group(1), hyphen.group(2), source)))
            continue
        part = _OPERATOR_SPACING_RE.sub(r"\1", part)
        comparators: List[Comparator] = []
        for token in part.split():
            comparators.extend(_desugar(token, source))
        sets.append(tuple(comparators))
    return VersionRange(raw=source, sets=tuple(sets))


def satisfies(version: str, range_text: str) -> bool:
    """Return True when ``version`` is admitted by ``range_text``."""
    return parse_range(range_text).test(parse_version(version))


@dataclass(frozen=True)
class Interval:
    """A contiguous set of versions; ``None`` bounds are unbounded."""

    lower: Optional[SemVer] = None
    lower_inclusive: bool = True
    upper: Optional[SemVer] = None
    upper_inclusive: bool = True

    @classmethod
    def from_comparators(cls, cset: Iterable[Comparator]) -> "Interval":
        interval = cls()
        for comparator in cset:
            interval = interval.intersect(_comparator_interval(comparator))
        return interval

    @property
    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower > self.upper:
            return True
        return self.lower == self.upper and not (self.lower_inclusive and self.upper_inclusive)

    def intersect(self, other: "Interval") -> "Interval":
        lower, lower_inclusive = self.lower, self.lower_inclusive
        if other.lower is not None and (
            lower is None
            or other.lower > lower
            or (other.lower == lower and not other.lower_inclusive)
        ):
            lower, lower_inclusive = other.lower, other.lower_inclusive

        upper, upper_inclusive = self.upper, self.upper_inclusive
        if other.upper is not None and (
            upper is None
            or other.upper < upper
            or (other.upper == upper and not other.upper_inclusive)
        ):
            upper, upper_inclusive = other.upper, other.upper_inclusive

        return Interval(lower, lower_inclusive, upper, upper_inclusive)

    def to_expression(self) -> str:
        """Render the interval as the shortest common npm range form."""
        if self.lower is None and self.upper is None:
            return "*"
        if self.lower is not None and self.lower_inclusive and self.upper is not None:
            if not self.upper_inclusive and self.upper == _caret_ceiling(self.lower):
                return f"^{self.lower}"
            if not self.upper_inclusive and self.upper == _upper(self.lower.major, self.lower.minor + 1):
                return f"~{self.lower}"
            if self.upper_inclusive and self.upper == self.lower:
                return str(self.lower)
        parts = []
        if self.lower is not None:
            parts.append(f"{'>=' if self.lower_inclusive else '>'}{self.lower}")
        if self.upper is not None:
            upper = self.upper
            if not self.upper_inclusive and upper.prerelease == ("0",):
                upper = SemVer(upper.major, upper.minor, upper.patch)
            parts.append(f"{'<=' if self.upper_inclusive else '<'}{upper}")
        return " ".join(parts)


def _comparator_interval(comparator: Comparator) -> Interval:
    if comparator.op in (">", ">="):
        return Interval(lower=comparator.version, lower_inclusive=comparator.op == ">=")
    if comparator.op in ("<", "<="):
        return Interval(upper=comparator.version, upper_inclusive=comparator.op == "<=")
    return Interval(comparator.version, True, comparator.version, True)


def _caret_ceiling(version: SemVer) -> SemVer:
    if version.major > 0:
        return _upper(version.major + 1)
    if version.minor > 0:
        return _upper(0, version.minor + 1)
    return _upper(0, 0, version.patch + 1)


def intersect_ranges(ranges: Sequence[VersionRange]) -> List[Interval]:
    """Return the intervals admitted by every range; empty when disjoint."""
    if not ranges:
        return [Interval()]
    current = ranges[0].intervals()
    for version_range in ranges[1:]:
        merged: List[Interval] = []
        for left in current:
            for right in version_range.intervals():
                interval = left.intersect(right)
                if not interval.is_empty and interval not in merged:
                    merged.append(interval)
        current = merged
        if not current:
            break
    return current


def ranges_intersect(*range_texts: str) -> bool:
    """True when at least one version could satisfy every range."""
    return bool(intersect_ranges([parse_range(text) for text in range_texts]))


def min_version(version_range: VersionRange) -> Optional[SemVer]:
    """Lowest version a range admits, or None when it admits nothing."""
    candidates = []
    for interval in version_range.intervals():
        candidates.append(interval.lower or SemVer(0, 0, 0))
    return min(candidates) if candidates else None


_MAJOR_RE = re.compile(r"(\d+)")


def coarse_majors(range_text: str) -> Set[int]:
    """Major versions mentioned by each alternative of a range string."""
    majors: Set[int] = set()
    for part in str(range_text).split("||"):
        match = _MAJOR_RE.search(part)
        if match:
            majors.add(int(match.group(1)))
    return majors


def coarse_major(version: str) -> Optional[int]:
    match = _MAJOR_RE.search(str(version))
    return int(match.group(1)) if match else None


def update_type(current: SemVer, latest: SemVer) -> str:
    if latest.major != current.major:
        return "major"
    if latest.minor != current.minor:
        return "minor"
    return "patch"
