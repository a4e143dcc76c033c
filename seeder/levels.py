"""
Level-range resolution and per-source level eligibility.

Only cache-backed sources count: an uncached source is reported and dropped,
both from the range computation and from materialization.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from tile_cache.sources import TileSource


LevelPolicy = Callable[[int, TileSource], bool]


def literal_level_policy(level: int, source: TileSource) -> bool:
    """
    `level >= min_level and max_level <= level`.

    Passes only at or beyond the source's maximum level, which, combined with
    the seeding ceiling, usually means "the source's deepest level only".
    """
    return level >= source.min_level and source.max_level <= level


def window_level_policy(level: int, source: TileSource) -> bool:
    """`min_level <= level <= max_level`: every level the source serves."""
    return source.min_level <= level <= source.max_level


LEVEL_POLICIES: Dict[str, LevelPolicy] = {
    "literal": literal_level_policy,
    "window": window_level_policy,
}


def get_level_policy(policy: Union[str, LevelPolicy]) -> LevelPolicy:
    if callable(policy):
        return policy
    try:
        return LEVEL_POLICIES[str(policy).lower()]
    except KeyError:
        raise ValueError(f"unknown level policy {policy!r}; expected one of {sorted(LEVEL_POLICIES)}") from None


@dataclass
class LevelRange:
    """
    Outcome of inspecting a map's sources.

    Attributes:
        has_cache: at least one source is cache-backed.
        min_level, max_level: extremes over cache-backed sources (None if there are none).
        image_sources, elevation_sources: the cache-backed sources, in configured order.
        skipped: (layer kind, name) of every source dropped for lacking a cache.
    """
    has_cache: bool = False
    min_level: Optional[int] = None
    max_level: Optional[int] = None
    image_sources: List[TileSource] = field(default_factory=list)
    elevation_sources: List[TileSource] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)


def resolve_level_range(
    image_sources: Iterable[TileSource],
    elevation_sources: Iterable[TileSource],
    reporter,
) -> LevelRange:
    """
    Warn about every uncached source and fold the level windows of the cached ones.
    `reporter` is anything with .warning()/.info(), e.g. a logging.Logger.
    """
    out = LevelRange()
    for kind, sources, kept in (
        ("Image", image_sources, out.image_sources),
        ("Elevation", elevation_sources, out.elevation_sources),
    ):
        for src in sources:
            if not src.is_cache_backed():
                reporter.warning(
                    "%s %s has no cache.", kind, src.name,
                    extra={"extra": {"layer": kind.lower(), "source": src.name}},
                )
                out.skipped.append((kind.lower(), src.name))
                continue
            out.has_cache = True
            kept.append(src)
            if out.min_level is None or src.min_level < out.min_level:
                out.min_level = src.min_level
            if out.max_level is None or src.max_level > out.max_level:
                out.max_level = src.max_level
    return out


def clamp_max_level(configured_max: int, level_range: LevelRange) -> int:
    """Lower the ceiling to what the caches support, when they report a positive, smaller maximum."""
    src_max = level_range.max_level
    if src_max is not None and 0 < src_max < configured_max:
        return src_max
    return configured_max
