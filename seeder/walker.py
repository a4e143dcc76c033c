from __future__ import annotations

import threading
import time
from collections import Counter
from concurrent.futures import ALL_COMPLETED, FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from common.types import Bounds, TileKey
from common.utils import ProgressMeter
from seeder.levels import LevelPolicy
from tile_cache.sources import ELEVATION, IMAGE, TileSource


@dataclass(frozen=True)
class ProductionFailure:
    """A (source, tile) pair that raised instead of producing an artifact."""
    source: str
    layer: str
    key: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "layer": self.layer, "key": self.key, "error": self.error}


# (layer, source, key) -> "ok" | "empty" | exception
_Outcome = Tuple[str, TileSource, TileKey, object]


class QuadtreeWalker:
    """
    Depth-first, pre-order walk of the pyramid that materializes every eligible
    (source, tile) pair inside `bounds` and between `min_level` and `max_level`.

    - Descent is driven by max_level only: levels below min_level are walked
      through but not materialized.
    - A node's children are computed and bounds-tested before anything below
      them is scheduled; only intersecting children are entered.
    - The root is bounds-tested like any child; a walk over disjoint bounds
      visits nothing.
    - With workers > 1, production calls run on a bounded thread pool while the
      walk continues; outcomes are folded in on the walking thread.
    - `cancel` (threading.Event) and `deadline` (time.monotonic value) are
      checked before each node's materialization step.
    """

    def __init__(
        self,
        image_sources: Sequence[TileSource],
        elevation_sources: Sequence[TileSource],
        *,
        min_level: int,
        max_level: int,
        bounds: Bounds,
        policy: LevelPolicy,
        logger,
        workers: int = 1,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
        progress_every: int = 500,
    ):
        self.image_sources = list(image_sources)
        self.elevation_sources = list(elevation_sources)
        self.min_level = int(min_level)
        self.max_level = int(max_level)
        self.bounds = bounds
        self.policy = policy
        self.log = logger
        self.workers = max(1, int(workers))
        self.cancel = cancel
        self.deadline = deadline

        self.cancelled = False
        self.nodes_by_level: Counter = Counter()
        self.materialized: Counter = Counter()
        self.empty: Counter = Counter()
        self.failures: List[ProductionFailure] = []

        self._progress = ProgressMeter(every=progress_every)
        self._pool: Optional[ThreadPoolExecutor] = None
        self._pending: Set[Future] = set()
        self._max_pending = self.workers * 4

    # ----------------------------
    # Public API
    # ----------------------------
    def run(self, root: TileKey) -> None:
        if not self.bounds.intersects(root.extent):
            return
        if self.workers == 1:
            self._visit(root)
            return
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="seed") as pool:
            self._pool = pool
            try:
                self._visit(root)
                self._drain(all_done=True)
            finally:
                self._pool = None

    # ----------------------------
    # Traversal
    # ----------------------------
    def _should_stop(self) -> bool:
        if self.cancelled:
            return True
        if self.cancel is not None and self.cancel.is_set():
            self.cancelled = True
        elif self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancelled = True
        if self.cancelled:
            self.log.info("Seeding cancelled; returning partial results.")
        return self.cancelled

    def _visit(self, key: TileKey) -> None:
        if self._should_stop():
            return

        level = key.level
        self.nodes_by_level[level] += 1

        # The geodetic root is a half-globe placeholder with nothing to cache.
        if self.min_level <= level <= self.max_level and not key.is_geodetic_root:
            self._materialize(key)

        if level >= self.max_level:
            return

        children = key.children()
        hits = [k for k in children if self.bounds.intersects(k.extent)]
        for child in hits:
            self._visit(child)
            if self.cancelled:
                return

    # ----------------------------
    # Materialization
    # ----------------------------
    def _jobs(self, key: TileKey) -> List[Tuple[str, TileSource]]:
        jobs: List[Tuple[str, TileSource]] = []
        for src in self.image_sources:
            if self.policy(key.level, src):
                jobs.append((IMAGE, src))
        for src in self.elevation_sources:
            if self.policy(key.level, src):
                jobs.append((ELEVATION, src))
        return jobs

    def _materialize(self, key: TileKey) -> None:
        for layer, src in self._jobs(key):
            if self._pool is None:
                self._record(_produce(layer, src, key))
            else:
                if len(self._pending) >= self._max_pending:
                    self._drain(all_done=False)
                self._pending.add(self._pool.submit(_produce, layer, src, key))

    def _drain(self, *, all_done: bool) -> None:
        if not self._pending:
            return
        done, pending = wait(self._pending, return_when=ALL_COMPLETED if all_done else FIRST_COMPLETED)
        self._pending = set(pending)
        for fut in done:
            self._record(fut.result())

    def _record(self, outcome: _Outcome) -> None:
        layer, src, key, result = outcome
        if isinstance(result, BaseException):
            self.failures.append(ProductionFailure(src.name, layer, str(key), f"{type(result).__name__}: {result}"))
            self.log.warning(
                "Failed to cache %s, tile = %s: %s", src.name, key, result,
                extra={"extra": {"source": src.name, "layer": layer, "key": str(key)}},
            )
        elif result == "empty":
            self.empty[src.name] += 1
        else:
            self.materialized[src.name] += 1
        if self._progress.tick():
            self.log.info("Seeding progress", extra={"extra": {**self._progress.snapshot(), "key": str(key)}})


def _produce(layer: str, src: TileSource, key: TileKey) -> _Outcome:
    """Run one production call; the artifact itself is dropped, only the outcome is kept."""
    make: Callable = src.create_image if layer == IMAGE else src.create_heightfield
    try:
        artifact = make(key)
    except Exception as e:  # recorded, never raised
        return (layer, src, key, e)
    return (layer, src, key, "empty" if artifact is None else "ok")
