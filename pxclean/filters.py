"""
Protection and kind filtering for cleanup candidates.

Supported protection patterns:
- ``tag:<name>``  protects resources carrying the tag
- ``id:<value>``  protects the resource with exactly that id
- ``web-*``       glob over the full name, ``*`` is the only wildcard
- ``db``          exact name match
"""

import re
from collections.abc import Iterable

from pxclean.models import Resource, ResourceKind

TAG_PREFIX = "tag:"
ID_PREFIX = "id:"


def _glob_to_regex(pattern: str) -> re.Pattern:
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile("^" + ".*".join(parts) + "$", re.DOTALL)


def _matches(resource: Resource, pattern: str) -> bool:
    if pattern.startswith(TAG_PREFIX):
        return pattern[len(TAG_PREFIX):] in resource.tags
    if pattern.startswith(ID_PREFIX):
        return resource.id == pattern[len(ID_PREFIX):]
    if "*" in pattern:
        return _glob_to_regex(pattern).match(resource.name) is not None
    return resource.name == pattern


def is_protected(resource: Resource, patterns: Iterable[str]) -> bool:
    """Return True if any pattern matches the resource."""
    return any(_matches(resource, pattern) for pattern in patterns)


def filter_resources(
    resources: Iterable[Resource],
    patterns: Iterable[str] = (),
    allowed_kinds: Iterable[ResourceKind] = (),
) -> list[Resource]:
    """
    Drop protected resources, then restrict to allowed kinds.

    Args:
        resources: Candidate resources.
        patterns: Protection patterns.
        allowed_kinds: Kinds to keep. Empty means no kind restriction.

    Returns:
        list[Resource]: Remaining resources in their original order.
    """
    patterns = list(patterns)
    kinds = set(allowed_kinds)
    kept = [r for r in resources if not is_protected(r, patterns)]
    if kinds:
        kept = [r for r in kept if r.kind in kinds]
    return kept


def protected_resources(resources: Iterable[Resource], patterns: Iterable[str]) -> list[Resource]:
    """Return the resources exempted by the patterns."""
    patterns = list(patterns)
    return [r for r in resources if is_protected(r, patterns)]


class ResourceFilter:
    """Holds a protection pattern set and kind allow-list."""

    def __init__(
        self,
        patterns: Iterable[str] = (),
        allowed_kinds: Iterable[ResourceKind] = (),
    ):
        self._patterns: list[str] = []
        for pattern in patterns:
            self.add_pattern(pattern)
        self.allowed_kinds: list[ResourceKind] = list(allowed_kinds)

    @property
    def patterns(self) -> list[str]:
        return list(self._patterns)

    def add_pattern(self, pattern: str) -> None:
        pattern = pattern.strip()
        if pattern and pattern not in self._patterns:
            self._patterns.append(pattern)

    def remove_pattern(self, pattern: str) -> None:
        if pattern in self._patterns:
            self._patterns.remove(pattern)

    def is_kind_allowed(self, kind: ResourceKind) -> bool:
        return not self.allowed_kinds or kind in self.allowed_kinds

    def is_protected(self, resource: Resource) -> bool:
        return is_protected(resource, self._patterns)

    def apply(self, resources: Iterable[Resource]) -> list[Resource]:
        return filter_resources(resources, self._patterns, self.allowed_kinds)

    def protected(self, resources: Iterable[Resource]) -> list[Resource]:
        return protected_resources(resources, self._patterns)
