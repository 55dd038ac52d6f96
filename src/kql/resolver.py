"""Hierarchical area-name resolution for get(...) location expressions.

get('Country', 'Province', 'District') names administrative levels 2, 3
and 4. Each level is looked up below the id resolved for the level before
it, so the lookups run strictly in order. Resolved areas are cached by
(level, name) for the lifetime of the cache; the cache never evicts.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Sequence

from kql.backends import Area, AreaResolver
from kql.errors import ResolutionGap

logger = logging.getLogger(__name__)

FIRST_LEVEL = 2
MAX_LEVELS = 3


class AreaCache:
    """Append-only, lock-guarded map of (level, name) to Area."""

    def __init__(self) -> None:
        self._areas: dict[tuple[int, str], Area] = {}
        self._lock = threading.Lock()

    def get(self, level: int, name: str) -> Area | None:
        with self._lock:
            return self._areas.get((level, name))

    def put(self, level: int, name: str, area: Area) -> None:
        # Concurrent first lookups of the same key may both land here; last write wins
        with self._lock:
            self._areas[(level, name)] = area

    def __contains__(self, key: tuple[int, str]) -> bool:
        with self._lock:
            return key in self._areas

    def __len__(self) -> int:
        with self._lock:
            return len(self._areas)


@dataclass
class Resolution:
    """Outcome of resolving one get(...) expression."""

    area_id: int | None = None
    areas: list[tuple[int, Area]] = field(default_factory=list)  # (level, area) in order
    gaps: list[ResolutionGap] = field(default_factory=list)


class HierarchicalResolver:
    """Resolves nested area names to the id of the deepest level found."""

    def __init__(self, areas: AreaResolver, cache: AreaCache | None = None) -> None:
        self.areas = areas
        self.cache = cache if cache is not None else AreaCache()

    def resolve(self, names: Sequence[Any]) -> Resolution:
        """Resolve names for levels 2, 3, 4 in order.

        A level that cannot be found is recorded as a gap and skipped; the
        next level is looked up below the last id that did resolve.
        """
        result = Resolution()
        if len(names) > MAX_LEVELS:
            logger.warning("get() takes at most %d area names, ignoring %r",
                           MAX_LEVELS, list(names[MAX_LEVELS:]))

        parent_id: int | None = None
        for offset, raw_name in enumerate(names[:MAX_LEVELS]):
            level = FIRST_LEVEL + offset
            if raw_name is None:
                continue
            name = str(raw_name)
            area = self._resolve_level(level, name, parent_id)
            if area is None:
                gap = ResolutionGap(kind="area", name=name, level=level)
                logger.warning("No area named %r at level %d", name, level)
                result.gaps.append(gap)
                continue
            result.areas.append((level, area))
            parent_id = area.id

        result.area_id = parent_id
        return result

    def _resolve_level(self, level: int, name: str, parent_id: int | None) -> Area | None:
        cached = self.cache.get(level, name)
        if cached is not None:
            logger.debug("Area cache hit for level %d %r -> %s", level, name, cached.id)
            return cached

        area = self.areas.lookup(level, name, parent_id)
        if area is not None:
            self.cache.put(level, name, area)
            logger.debug("Resolved level %d %r -> %s", level, name, area.id)
        return area
