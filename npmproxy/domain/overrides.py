"""
Override table: decides which requests are served from local sources.
"""
from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

from npmproxy.domain.models import Override


def matching_override(overrides: Sequence[Override], path: str) -> Optional[Override]:
    """
    Return the first override whose namespace is a prefix of `path`.

    No normalization happens here; callers pass the path without its
    leading slash.
    """
    for override in overrides:
        if path.startswith(override.namespace):
            return override
    return None


class OverrideTable:
    """
    Read-only, ordered list of override rules.

    Built once from configuration and shared by both services. Lookups are a
    linear scan; override counts come from configuration and stay small.
    """

    def __init__(self, overrides: Iterable[Override] = ()):
        self._overrides: Tuple[Override, ...] = tuple(overrides)

    def __iter__(self):
        return iter(self._overrides)

    def __len__(self) -> int:
        return len(self._overrides)

    @property
    def namespaces(self) -> list[str]:
        return [o.namespace for o in self._overrides]

    def match(self, path: str) -> Optional[Override]:
        return matching_override(self._overrides, path)
