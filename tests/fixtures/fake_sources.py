"""
In-memory tile sources that record every production call.
"""

import threading
from typing import Iterable, List, Optional

import numpy as np

from common.types import TileKey
from tile_cache.sources import ELEVATION, IMAGE, TileProductionError, TileSource


class RecordingSource(TileSource):
    """
    Produces tiny arrays and remembers which keys it was asked for.

    - cached: what is_cache_backed() reports
    - fail_on: keys (as "z/x/y") that raise TileProductionError
    - empty_on: keys that produce None
    - on_call: hook run after each call (e.g. to trigger cancellation)
    """

    def __init__(
        self,
        name: str,
        *,
        layer: str = IMAGE,
        cached: bool = True,
        min_level: int = 0,
        max_level: int = 20,
        fail_on: Iterable[str] = (),
        empty_on: Iterable[str] = (),
        on_call=None,
    ):
        super().__init__(name, min_level=min_level, max_level=max_level, tile_size=4)
        self.layer = layer
        self.cached = cached
        self.fail_on = set(fail_on)
        self.empty_on = set(empty_on)
        self.on_call = on_call
        self.calls: List[TileKey] = []
        self._lock = threading.Lock()

    def is_cache_backed(self) -> bool:
        return self.cached

    def _produce(self, key: TileKey, kind: str) -> Optional[np.ndarray]:
        if kind != self.layer:
            raise AssertionError(f"{self.name} asked for {kind}, is {self.layer}")
        with self._lock:
            self.calls.append(key)
        if self.on_call is not None:
            self.on_call(self, key)
        if str(key) in self.fail_on:
            raise TileProductionError(f"boom at {key}")
        if str(key) in self.empty_on:
            return None
        return np.zeros((4, 4), dtype=np.float32)

    def create_image(self, key: TileKey) -> Optional[np.ndarray]:
        return self._produce(key, IMAGE)

    def create_heightfield(self, key: TileKey) -> Optional[np.ndarray]:
        return self._produce(key, ELEVATION)

    @property
    def levels(self) -> List[int]:
        return sorted(k.level for k in self.calls)


def image(name: str, **kw) -> RecordingSource:
    return RecordingSource(name, layer=IMAGE, **kw)


def elevation(name: str, **kw) -> RecordingSource:
    return RecordingSource(name, layer=ELEVATION, **kw)
