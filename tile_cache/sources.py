"""
Tile sources: the producers the seeder drives.

A source turns a TileKey into an artifact (BGR uint8 image or float32
heightfield). `None` means the source simply has no data there. Real failures
raise TileProductionError so callers can tell them apart.

Only sources wrapped in CachedTileSource report `is_cache_backed()`; seeding an
uncached source would do work that is thrown away.
"""
from __future__ import annotations

import logging
import os
import threading
import zlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import cv2
import numpy as np
import rasterio
import requests
from rasterio.transform import from_bounds
from rasterio.warp import Resampling, reproject

from common.geo import bounds_to_profile
from common.types import Bounds, Profile, TileKey
from tile_cache.store import HEIGHTFIELD_SUFFIX, IMAGE_SUFFIX, TileStore


log = logging.getLogger(__name__)

IMAGE = "image"
ELEVATION = "elevation"

DEFAULT_MAX_LEVEL = 20


class TileProductionError(RuntimeError):
    """A source failed to produce a tile it should have been able to produce."""


class TileSource:
    """
    Base class for a single image or elevation layer.

    Attributes:
        name: layer name, also the cache directory name.
        layer: IMAGE or ELEVATION.
        min_level, max_level: levels this source can serve.
        tile_size: output width/height in pixels (or height samples).
    """
    layer = IMAGE

    def __init__(self, name: str, *, min_level: int = 0, max_level: int = DEFAULT_MAX_LEVEL, tile_size: int = 256):
        if min_level < 0 or max_level < 0:
            raise ValueError("levels must be >= 0")
        self.name = name
        self.min_level = int(min_level)
        self.max_level = int(max_level)
        self.tile_size = int(tile_size)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, levels={self.min_level}..{self.max_level})"

    def is_cache_backed(self) -> bool:
        return False

    def create_image(self, key: TileKey) -> Optional[np.ndarray]:
        raise NotImplementedError(f"{self.name} does not produce imagery")

    def create_heightfield(self, key: TileKey) -> Optional[np.ndarray]:
        raise NotImplementedError(f"{self.name} does not produce elevation")


class CachedTileSource(TileSource):
    """
    Puts a TileStore in front of another source. Production checks the store
    first, otherwise asks the wrapped source and writes the result back.
    """

    def __init__(self, inner: TileSource, store: TileStore):
        super().__init__(inner.name, min_level=inner.min_level, max_level=inner.max_level, tile_size=inner.tile_size)
        self.inner = inner
        self.store = store
        self.layer = inner.layer
        self.hits = 0
        self.misses = 0
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"CachedTileSource({self.inner!r}, root={str(self.store.root)!r})"

    def is_cache_backed(self) -> bool:
        return True

    def _count(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self.hits += 1
            else:
                self.misses += 1

    def create_image(self, key: TileKey) -> Optional[np.ndarray]:
        if self.store.has(self.name, key, IMAGE_SUFFIX):
            cached = self.store.get_image(self.name, key)
            if cached is not None:
                self._count(True)
                return cached
        self._count(False)
        image = self.inner.create_image(key)
        if image is not None:
            self.store.put_image(self.name, key, image, source=type(self.inner).__name__)
        return image

    def create_heightfield(self, key: TileKey) -> Optional[np.ndarray]:
        if self.store.has(self.name, key, HEIGHTFIELD_SUFFIX):
            cached = self.store.get_heightfield(self.name, key)
            if cached is not None:
                self._count(True)
                return cached
        self._count(False)
        heights = self.inner.create_heightfield(key)
        if heights is not None:
            self.store.put_heightfield(self.name, key, heights, source=type(self.inner).__name__)
        return heights


# -------------------------
# Raster-backed sources
# -------------------------
class _GeoTiffMixin:
    """Shared GeoTIFF bookkeeping: path check and per-profile data extent."""

    path: str

    def _init_raster(self, path: str) -> None:
        if not os.path.exists(path):
            raise FileNotFoundError(f"GeoTIFF not found: {path}")
        self.path = path
        with rasterio.open(path) as ds:
            if ds.crs is None:
                raise ValueError(f"{path} has no CRS; cannot reproject")
            self._crs = ds.crs.to_string()
            self._native = Bounds(*ds.bounds)
            self._band_count = ds.count
            self._dtype = ds.dtypes[0]
        self._extents: Dict[str, Bounds] = {}

    def data_extent(self, profile: Profile) -> Bounds:
        ext = self._extents.get(profile.name)
        if ext is None:
            ext = bounds_to_profile(self._native, self._crs, profile)
            self._extents[profile.name] = ext
        return ext

    def _warp(self, key: TileKey, bands: List[int], size: int) -> np.ndarray:
        """Reproject the given 1-based bands into the key's extent; unfilled cells are NaN."""
        ext = key.extent
        dst = np.full((len(bands), size, size), np.nan, dtype=np.float32)
        transform = from_bounds(ext.min_x, ext.min_y, ext.max_x, ext.max_y, size, size)
        # A fresh handle per call: rasterio datasets are not shared across threads.
        with rasterio.open(self.path) as ds:
            for i, b in enumerate(bands):
                reproject(
                    source=rasterio.band(ds, b),
                    destination=dst[i],
                    src_transform=ds.transform,
                    src_crs=ds.crs,
                    src_nodata=ds.nodata,
                    dst_transform=transform,
                    dst_crs=key.profile.srs,
                    dst_nodata=np.nan,
                    resampling=Resampling.bilinear,
                )
        return dst


class GeoTiffImageSource(_GeoTiffMixin, TileSource):
    """Imagery cut from a (possibly much larger) GeoTIFF, any CRS."""
    layer = IMAGE

    def __init__(self, name: str, path: str, **kw):
        super().__init__(name, **kw)
        self._init_raster(path)

    def create_image(self, key: TileKey) -> Optional[np.ndarray]:
        if not self.data_extent(key.profile).intersects(key.extent):
            return None
        bands = [1, 2, 3] if self._band_count >= 3 else [1]
        data = self._warp(key, bands, self.tile_size)
        valid = np.isfinite(data)
        if not valid.any():
            return None

        # Scale to 0..255 uint8; 8-bit sources pass through unchanged
        if self._dtype == "uint8":
            img = np.nan_to_num(data, nan=0.0)
        else:
            p1, p99 = np.percentile(data[valid], 1), np.percentile(data[valid], 99)
            if p99 <= p1:
                p1, p99 = float(data[valid].min()), float(data[valid].max() + 1e-6)
            img = np.clip((np.nan_to_num(data, nan=p1) - p1) / (p99 - p1), 0, 1) * 255.0

        img = np.moveaxis(img, 0, -1).astype(np.uint8)
        if img.shape[2] == 1:
            img = np.repeat(img, 3, axis=-1)
        else:
            img = np.ascontiguousarray(img[..., ::-1])  # RGB -> BGR for OpenCV
        return img


class SyntheticImageSource(TileSource):
    """Feature-rich procedural imagery (edges, corners, texture), deterministic per key."""
    layer = IMAGE

    def __init__(self, name: str = "synthetic", *, seed: int = 1234, **kw):
        super().__init__(name, **kw)
        self.seed = int(seed)

    def create_image(self, key: TileKey) -> Optional[np.ndarray]:
        w = h = self.tile_size
        rng = np.random.default_rng(zlib.crc32(f"{self.seed}:{key}".encode("ascii")))
        base = rng.normal(128, 25, size=(h, w, 3)).clip(0, 255).astype(np.uint8)

        step = max(1, w // 8)
        for x in range(0, w, step):
            cv2.line(base, (x, 0), (x, h - 1), (60, 60, 60), 1)
        for y in range(0, h, step):
            cv2.line(base, (0, y), (w - 1, y), (60, 60, 60), 1)

        for _ in range(20):
            x1, y1, x2, y2 = (int(v) for v in rng.integers(0, w, size=4))
            color = tuple(int(c) for c in rng.integers(30, 225, size=3))
            cv2.rectangle(base, (min(x1, x2), min(y1, y2)), (max(x1, x2), max(y1, y2)), color, 1)

        cv2.putText(base, str(key), (8, h - 12), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (240, 240, 240), 1, cv2.LINE_AA)
        return base


class XYZImageSource(TileSource):
    """
    Imagery from an HTTP tile service.

    `url` is a template with {z}, {x}, {y} and optionally {quadkey}, e.g.
    https://tiles.example.com/{z}/{x}/{y}.png. Row 0 is the top row (XYZ, not TMS).
    """
    layer = IMAGE

    def __init__(
        self,
        name: str,
        url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        **kw,
    ):
        super().__init__(name, **kw)
        if "{z}" not in url and "{quadkey}" not in url:
            raise ValueError("url template needs {z}/{x}/{y} or {quadkey}")
        self.url = url
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        if headers:
            self.session.headers.update(headers)

    def build_url(self, key: TileKey) -> str:
        return self.url.format(z=key.level, x=key.x, y=key.y, quadkey=key.quadkey)

    def create_image(self, key: TileKey) -> Optional[np.ndarray]:
        url = self.build_url(key)
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise TileProductionError(f"{self.name}: request for {key} failed: {e}") from e
        if r.status_code == 404:
            return None
        if r.status_code != 200 or not r.content:
            raise TileProductionError(f"{self.name}: HTTP {r.status_code} for {key}: {r.text[:200]}")

        arr = np.frombuffer(r.content, dtype=np.uint8)
        img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
        if img is None:
            raise TileProductionError(f"{self.name}: undecodable image for {key}")
        if img.shape[0] != self.tile_size or img.shape[1] != self.tile_size:
            img = cv2.resize(img, (self.tile_size, self.tile_size), interpolation=cv2.INTER_AREA)
        return img


# -------------------------
# Map handle
# -------------------------
@dataclass
class SourceSet:
    """Everything the seeder needs from a map: its profile and its layers."""
    profile: Profile
    image_sources: List[TileSource] = field(default_factory=list)
    elevation_sources: List[TileSource] = field(default_factory=list)

    def root_key(self) -> TileKey:
        return self.profile.root_key()

    def all_sources(self) -> List[TileSource]:
        return list(self.image_sources) + list(self.elevation_sources)
