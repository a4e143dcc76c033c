from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from common.logging_setup import get_logger
from common.types import Bounds, SeedConfig
from common.utils import format_duration, iso_now_ms
from seeder.levels import LevelPolicy, clamp_max_level, get_level_policy, resolve_level_range
from seeder.walker import ProductionFailure, QuadtreeWalker
from tile_cache.sources import SourceSet


NO_CACHE_REASON = "There are no caches specified for the given map. Please configure a cache in the map config."


@dataclass
class SeedReport:
    """
    What a seed run did.

    `aborted` means nothing was traversed (no cache-backed source);
    `cancelled` means traversal stopped early and the counts are partial.
    """
    configured_min_level: int
    configured_max_level: int
    min_level: int
    max_level: int
    bounds: Bounds
    aborted: bool = False
    abort_reason: Optional[str] = None
    cancelled: bool = False
    resolved_min_level: Optional[int] = None
    resolved_max_level: Optional[int] = None
    level_policy: str = "literal"
    skipped_sources: List[Tuple[str, str]] = field(default_factory=list)
    materialized: Dict[str, int] = field(default_factory=dict)
    empty: Dict[str, int] = field(default_factory=dict)
    failures: List[ProductionFailure] = field(default_factory=list)
    nodes_by_level: Dict[int, int] = field(default_factory=dict)
    started_at: str = field(default_factory=iso_now_ms)
    finished_at: Optional[str] = None
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.aborted and not self.cancelled and not self.failures

    @property
    def total_tiles(self) -> int:
        return sum(self.materialized.values())

    @property
    def nodes_visited(self) -> int:
        return sum(self.nodes_by_level.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "cancelled": self.cancelled,
            "configured_levels": [self.configured_min_level, self.configured_max_level],
            "levels": [self.min_level, self.max_level],
            "resolved_levels": [self.resolved_min_level, self.resolved_max_level],
            "level_policy": self.level_policy,
            "bounds": list(self.bounds.as_tuple()),
            "skipped_sources": [{"layer": layer, "source": name} for layer, name in self.skipped_sources],
            "materialized": dict(self.materialized),
            "empty": dict(self.empty),
            "total_tiles": self.total_tiles,
            "failures": [f.to_dict() for f in self.failures],
            "nodes_by_level": {str(k): v for k, v in sorted(self.nodes_by_level.items())},
            "nodes_visited": self.nodes_visited,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "elapsed_s": round(self.elapsed_s, 3),
        }


def seed(
    config: SeedConfig,
    sources: SourceSet,
    reporter=None,
    *,
    level_policy: Union[str, LevelPolicy] = "literal",
    workers: int = 1,
    cancel: Optional[threading.Event] = None,
    timeout_s: Optional[float] = None,
) -> SeedReport:
    """
    Pre-populate the caches of `sources` for the region and levels in `config`.

    Params:
        config: requested levels and bounds; never modified.
        sources: the map's profile and image/elevation layers.
        reporter: logger-like object (.info/.warning); defaults to the "seeder" logger.
        level_policy: "literal", "window" or a callable (level, source) -> bool.
        workers: production calls in flight at once (1 = strictly sequential).
        cancel: set it from another thread to stop after the current node.
        timeout_s: stop cooperatively once this many seconds have passed.

    Returns:
        SeedReport; lack of any cache-backed source is reported, not raised.
    """
    log = reporter if reporter is not None else get_logger("seeder")
    policy = get_level_policy(level_policy)
    policy_name = level_policy if isinstance(level_policy, str) else getattr(level_policy, "__name__", "custom")
    t0 = time.perf_counter()

    root = sources.root_key()

    # Unset (all-zero) bounds mean the whole profile
    bounds = config.bounds
    if bounds.is_unset:
        bounds = root.extent

    levels = resolve_level_range(sources.image_sources, sources.elevation_sources, log)

    report = SeedReport(
        configured_min_level=config.min_level,
        configured_max_level=config.max_level,
        min_level=config.min_level,
        max_level=config.max_level,
        bounds=bounds,
        resolved_min_level=levels.min_level,
        resolved_max_level=levels.max_level,
        level_policy=str(policy_name),
        skipped_sources=list(levels.skipped),
    )

    if not levels.has_cache:
        log.info(NO_CACHE_REASON)
        report.aborted = True
        report.abort_reason = NO_CACHE_REASON
        return _finish(report, t0)

    report.max_level = clamp_max_level(config.max_level, levels)
    log.info(
        "Maximum cache level will be %d", report.max_level,
        extra={"extra": {
            "min_level": report.min_level,
            "max_level": report.max_level,
            "bounds": list(bounds.as_tuple()),
            "profile": sources.profile.name,
            "policy": report.level_policy,
            "workers": workers,
        }},
    )

    if not bounds.intersects(root.extent):
        log.info(
            "Seed bounds do not intersect the %s extent; nothing to cache.", sources.profile.name,
            extra={"extra": {"bounds": list(bounds.as_tuple()), "extent": list(root.extent.as_tuple())}},
        )
        return _finish(report, t0)

    walker = QuadtreeWalker(
        levels.image_sources,
        levels.elevation_sources,
        min_level=report.min_level,
        max_level=report.max_level,
        bounds=bounds,
        policy=policy,
        logger=log,
        workers=workers,
        cancel=cancel,
        deadline=None if timeout_s is None else time.monotonic() + float(timeout_s),
    )
    walker.run(root)

    report.cancelled = walker.cancelled
    report.materialized = dict(walker.materialized)
    report.empty = dict(walker.empty)
    report.failures = list(walker.failures)
    report.nodes_by_level = dict(walker.nodes_by_level)
    _finish(report, t0)

    log.info(
        "Seeding %s: %d tiles in %s",
        "cancelled" if report.cancelled else "complete",
        report.total_tiles,
        format_duration(report.elapsed_s),
        extra={"extra": {
            "materialized": report.materialized,
            "empty": report.empty,
            "failures": len(report.failures),
            "nodes_visited": report.nodes_visited,
        }},
    )
    return report


def _finish(report: SeedReport, t0: float) -> SeedReport:
    report.finished_at = iso_now_ms()
    report.elapsed_s = time.perf_counter() - t0
    return report
