"""Version-gated capability selection.

Toolchains change behavior across releases (a new install command, a
flag that only exists from some version on). Each decision point is a
static table of ``(minimum version, behavior)`` rules; the rule with the
greatest minimum not exceeding the discovered version wins.
"""

import re
from dataclasses import dataclass
from typing import Any, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

from packaging.version import Version

from .errors import DetectionError

T = TypeVar("T")

SEMVER_PATTERN = re.compile(r"^\s*v?(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)\s*$")


def parse_version(version: str) -> Version:
    """Parse a strict ``MAJOR.MINOR.PATCH`` version.

    Pre-release and build-metadata suffixes have no agreed ordering across
    toolchains, so they are rejected rather than guessed at.

    Raises:
        DetectionError: If ``version`` is not a plain semantic version.
    """
    match = SEMVER_PATTERN.match(version or "")
    if not match:
        raise DetectionError(
            f"unsupported version format {version!r}, expected MAJOR.MINOR.PATCH",
            ["Use a MAJOR.MINOR.PATCH version string without pre-release or build suffixes"]
        )
    return Version(f"{int(match['major'])}.{int(match['minor'])}.{int(match['patch'])}")


@dataclass(frozen=True)
class CapabilityRule(Generic[T]):
    """Behavior that applies from ``min_version`` (inclusive) upwards."""
    min_version: str
    behavior: T


class CapabilityTable(Generic[T]):
    """An ordered rule table for one decision point."""

    def __init__(self, rules: Iterable[Tuple[str, T]], default: T) -> None:
        """
        Args:
            rules: ``(min_version, behavior)`` pairs
            default: Behavior when the version is below every threshold

        Raises:
            ValueError: If two rules share the same threshold.
        """
        parsed = sorted(
            ((parse_version(minimum), CapabilityRule(minimum, behavior)) for minimum, behavior in rules),
            key=lambda pair: pair[0],
        )
        for (lower, _), (upper, rule) in zip(parsed, parsed[1:]):
            if lower == upper:
                raise ValueError(f"duplicate capability threshold {rule.min_version}")
        self._parsed = parsed
        self.default = default

    @property
    def rules(self) -> List[CapabilityRule[T]]:
        return [rule for _, rule in self._parsed]

    def matching_rule(self, version: str) -> Optional[CapabilityRule[T]]:
        """Return the rule selected for ``version``, or None if the default applies."""
        discovered = parse_version(version)
        selected = None
        for minimum, rule in self._parsed:
            if minimum > discovered:
                break
            selected = rule
        return selected

    def select(self, version: str) -> T:
        rule = self.matching_rule(version)
        return self.default if rule is None else rule.behavior


def select_behavior(version: str, rules: Sequence[Tuple[str, Any]], default: Any) -> Any:
    """Choose the behavior for ``version`` from ``rules``.

    A pure function of its arguments: the rule with the greatest minimum
    version that is less than or equal to ``version`` wins, otherwise
    ``default`` is returned.

    Example:
        >>> select_behavior("8.3.1", [("5.7.1", "ci")], "install")
        'ci'
    """
    return CapabilityTable(rules, default).select(version)
