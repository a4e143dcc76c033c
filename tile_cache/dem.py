from __future__ import annotations

from typing import Optional

import numpy as np

from common.types import TileKey
from tile_cache.sources import ELEVATION, TileSource, _GeoTiffMixin


class GeoTiffElevationSource(_GeoTiffMixin, TileSource):
    """
    Heightfields resampled from a single-band DEM GeoTIFF.
    - tile_size is the number of height samples per side.
    - cells with no DEM coverage are NaN; a tile with no coverage at all is None.
    """
    layer = ELEVATION

    def __init__(self, name: str, path: str, *, band: int = 1, tile_size: int = 32, **kw):
        super().__init__(name, tile_size=tile_size, **kw)
        self._init_raster(path)
        if not 1 <= band <= self._band_count:
            raise ValueError(f"{path} has no band {band}")
        self.band = band

    def create_heightfield(self, key: TileKey) -> Optional[np.ndarray]:
        if not self.data_extent(key.profile).intersects(key.extent):
            return None
        heights = self._warp(key, [self.band], self.tile_size)[0]
        if not np.isfinite(heights).any():
            return None
        return heights


class ConstantElevationSource(TileSource):
    """Flat surface for maps without a DEM (50 m unless told otherwise)."""
    layer = ELEVATION

    def __init__(self, name: str = "flat", *, height_m: float = 50.0, tile_size: int = 32, **kw):
        super().__init__(name, tile_size=tile_size, **kw)
        self.height_m = float(height_m)

    def create_heightfield(self, key: TileKey) -> Optional[np.ndarray]:
        return np.full((self.tile_size, self.tile_size), self.height_m, dtype=np.float32)
