"""
Version and Range Model.

Parses version literals, compares them, and evaluates set membership
with override semantics.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from .errors import LexError


VERSION_PATTERN = r"[0-9]+(?:\.[0-9]+)*(?:[A-Za-z_][A-Za-z0-9_]*)?"

_VERSION_RE = re.compile(r"^v?([0-9]+(?:\.[0-9]+)*)([A-Za-z_][A-Za-z0-9_]*)?$")
_RANGE_RE = re.compile(
    rf"^(?P<neg>!)?(?P<low>{VERSION_PATTERN})?(?P<dash>-)?(?P<high>{VERSION_PATTERN})?$"
)

Component = Union[int, str]


def _compare_components(a: Component, b: Component) -> int:
    """Compare two components; numeric sorts before alphanumeric."""
    if isinstance(a, int) and isinstance(b, int):
        return (a > b) - (a < b)
    if isinstance(a, int):
        return -1
    if isinstance(b, int):
        return 1
    return (a > b) - (a < b)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """
    An immutable version value.

    Components are numeric or alphanumeric. Comparison is component by
    component, with the shorter sequence padded with zeros, so `1.0`
    equals `1`.
    """

    components: Tuple[Component, ...]
    text: str = field(default="")

    @classmethod
    def parse(cls, text: str) -> "Version":
        """
        Parse a version literal.

        Args:
            text: Version text such as `0.80`, `1.2.3_01` or `v5.8a`.

        Returns:
            The parsed Version.

        Raises:
            LexError: If the text is not a version.
        """
        if not isinstance(text, str):
            text = str(text)
        raw = text.strip()
        match = _VERSION_RE.match(raw)
        if not match:
            raise LexError(f"Malformed version: {text!r}")

        components: list = [int(part) for part in match.group(1).split(".")]
        if match.group(2):
            components.append(match.group(2))
        return cls(components=tuple(components), text=raw)

    def _normalized(self) -> Tuple[Component, ...]:
        components = list(self.components)
        while components and components[-1] == 0:
            components.pop()
        return tuple(components)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare(self, other) == 0

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare(self, other) < 0

    def __hash__(self) -> int:
        return hash(self._normalized())

    def __str__(self) -> str:
        if self.text:
            return self.text
        numeric = [str(c) for c in self.components if isinstance(c, int)]
        suffix = "".join(c for c in self.components if isinstance(c, str))
        return ".".join(numeric) + suffix

    def __repr__(self) -> str:
        return f"Version({str(self)!r})"


def parse_version(text: str) -> Version:
    """Parse a version literal, raising LexError when malformed."""
    return Version.parse(text)


def compare(a: Version, b: Version) -> int:
    """
    Compare two versions.

    Returns:
        -1, 0 or 1 as `a` is less than, equal to or greater than `b`.
    """
    left, right = a.components, b.components
    for index in range(max(len(left), len(right))):
        x = left[index] if index < len(left) else 0
        y = right[index] if index < len(right) else 0
        result = _compare_components(x, y)
        if result:
            return result
    return 0


@dataclass(frozen=True)
class Range:
    """
    A closed version interval, optionally negated.

    A missing bound means the interval is open on that side.
    """

    low: Optional[Version] = None
    high: Optional[Version] = None
    negated: bool = False

    @classmethod
    def parse(cls, text: str) -> "Range":
        """
        Parse a range such as `0.80-`, `!0.85`, `-2.0` or `1.0-1.5`.

        A bare version is an exact match.

        Raises:
            LexError: If the text is not a range.
        """
        match = _RANGE_RE.match(text.strip())
        if not match or not (match.group("low") or match.group("dash") or match.group("high")):
            raise LexError(f"Malformed version range: {text!r}")

        low = Version.parse(match.group("low")) if match.group("low") else None
        high = Version.parse(match.group("high")) if match.group("high") else None
        if not match.group("dash"):
            if high is not None:
                raise LexError(f"Malformed version range: {text!r}")
            high = low
        return cls(low=low, high=high, negated=bool(match.group("neg")))

    def covers(self, version: Version) -> bool:
        """Whether the un-negated interval contains the version."""
        if self.low is not None and version < self.low:
            return False
        if self.high is not None and version > self.high:
            return False
        return True

    def contains(self, version: Version) -> bool:
        """Interval membership, flipped when the range is negated."""
        return self.covers(version) != self.negated

    def __str__(self) -> str:
        prefix = "!" if self.negated else ""
        if self.low is not None and self.low == self.high:
            return f"{prefix}{self.low}"
        low = str(self.low) if self.low is not None else ""
        high = str(self.high) if self.high is not None else ""
        return f"{prefix}{low}-{high}"


@dataclass(frozen=True)
class VersionSet:
    """
    An ordered list of ranges with override semantics.

    The last range whose interval covers a version decides: a negated
    range rejects it, a plain range accepts it. A version covered by no
    range is rejected.
    """

    ranges: Tuple[Range, ...] = ()

    def matches(self, version: Version) -> bool:
        verdict = False
        for item in self.ranges:
            if item.covers(version):
                verdict = not item.negated
        return verdict

    def __str__(self) -> str:
        return "[" + " ".join(str(r) for r in self.ranges) + "]"
