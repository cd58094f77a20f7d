"""Scope policy deciding which discovered URLs may be fetched.

Matchers are pure predicates over (seed, candidate) and hold no mutable
state, so any number of tasks may call them concurrently.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, List

from .url_tools import host_of

logger = logging.getLogger(__name__)


class Matcher(ABC):
    """Evaluates a candidate URL and decides whether it should be crawled."""

    @abstractmethod
    def match(self, seed: str, candidate: str) -> bool:
        raise NotImplementedError


class HostMatcher(Matcher):
    """Never leave the seed's host; never re-crawl the seed itself."""

    def __init__(self, recrawl_seed: bool = False):
        self.recrawl_seed = recrawl_seed

    def match(self, seed: str, candidate: str) -> bool:
        # Never crawl outside of the seed host
        if host_of(seed) != host_of(candidate):
            return False
        # Never re-crawl initial seed
        if not self.recrawl_seed and seed == candidate:
            return False
        return True

    def __repr__(self) -> str:
        return f"HostMatcher(recrawl_seed={self.recrawl_seed})"


class PatternMatcher(Matcher):
    """Narrows another matcher with allow/deny regular expressions.

    Deny patterns override allow patterns. When allow patterns are given,
    a candidate must match at least one of them (deny-by-default).
    """

    def __init__(
        self,
        base: Matcher,
        allow_patterns: Iterable[str] = (),
        deny_patterns: Iterable[str] = (),
    ):
        self.base = base
        self.allow_patterns: List[re.Pattern] = [re.compile(p) for p in allow_patterns]
        self.deny_patterns: List[re.Pattern] = [re.compile(p) for p in deny_patterns]

        logger.info(f"Matcher initialized with {len(self.allow_patterns)} allow patterns, "
                    f"{len(self.deny_patterns)} deny patterns")

    def match(self, seed: str, candidate: str) -> bool:
        if not self.base.match(seed, candidate):
            return False

        for pattern in self.deny_patterns:
            if pattern.search(candidate):
                return False

        if not self.allow_patterns:
            return True
        return any(pattern.search(candidate) for pattern in self.allow_patterns)

    def __repr__(self) -> str:
        return (f"PatternMatcher(base={self.base!r}, allow={len(self.allow_patterns)}, "
                f"deny={len(self.deny_patterns)})")


def build_matcher(scope=None) -> Matcher:
    """Build the matcher described by a ``ScopeConfig`` (or the default one)."""
    if scope is None:
        return HostMatcher()

    matcher: Matcher = HostMatcher(recrawl_seed=scope.recrawl_seed)
    if scope.allow_patterns or scope.deny_patterns:
        matcher = PatternMatcher(matcher, scope.allow_patterns, scope.deny_patterns)
    return matcher
