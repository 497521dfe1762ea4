"""Endpoint rule matching."""
from __future__ import annotations

from typing import Iterable

from ipguard.config import EndpointRule

WILDCARD = "*"


def has_wildcard(pattern: str) -> bool:
    """Return ``True`` when the pattern contains the wildcard token."""

    return WILDCARD in pattern


def pattern_matches(path: str, pattern: str) -> bool:
    """Check whether ``path`` satisfies ``pattern``.

    Only the first ``*`` is a wildcard and stands for any character
    sequence, including an empty one; any later ``*`` is literal. Without
    a wildcard the whole path must be equal to the pattern.
    """

    if not has_wildcard(pattern):
        return path == pattern
    prefix, suffix = pattern.split(WILDCARD, 1)
    if len(path) < len(prefix) + len(suffix):
        return False
    return path.startswith(prefix) and path.endswith(suffix)


def method_matches(method: str, rule_method: str) -> bool:
    return rule_method == WILDCARD or rule_method == method.upper()


def matches(method: str, path: str, rules: Iterable[EndpointRule]) -> bool:
    """Return ``True`` if any rule selects the request; no rules selects nothing."""

    return any(
        method_matches(method, rule.method) and pattern_matches(path, rule.pattern)
        for rule in rules
    )
