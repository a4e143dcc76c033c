from __future__ import annotations

import contextlib
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

import cv2
import numpy as np
import rasterio
from rasterio.io import MemoryFile
from rasterio.transform import from_bounds

from common.geo import tile_metadata
from common.types import TileKey


IMAGE_SUFFIX = ".png"
HEIGHTFIELD_SUFFIX = ".tif"

_LAYER_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def _atomic_write(path: Path, data: bytes) -> None:
    """Write via a sibling temp file + rename, so concurrent writers never expose a partial tile."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


class TileStore:
    """
    Persistent pyramid cache on disk.

        root/
          └─ {layer}/
              └─ {z}/
                  └─ {x}/
                      ├─ {y}.json   (georeferencing metadata)
                      ├─ {y}.png    (imagery)
                      └─ {y}.tif    (heightfield, float32 GeoTIFF)

    Tiles are immutable functions of their key, so rewriting one is harmless
    (last writer wins).
    """

    def __init__(self, root: str = "data/cache"):
        self.root = Path(root)

    # -------- paths --------

    def tile_path(self, layer: str, z: int, x: int, y: int, suffix: str) -> Path:
        if not _LAYER_RE.match(layer) or layer in (".", ".."):
            raise ValueError(f"invalid layer name: {layer!r}")
        return self.root / layer / str(int(z)) / str(int(x)) / f"{int(y)}{suffix}"

    def _paths(self, layer: str, key: TileKey, suffix: str) -> Tuple[Path, Path]:
        data = self.tile_path(layer, key.level, key.x, key.y, suffix)
        return data, data.with_suffix(".json")

    # -------- public API --------

    def has(self, layer: str, key: TileKey, suffix: str = IMAGE_SUFFIX) -> bool:
        return self._paths(layer, key, suffix)[0].is_file()

    def put_image(self, layer: str, key: TileKey, image: np.ndarray, source: Optional[str] = None) -> Path:
        if image.ndim not in (2, 3):
            raise ValueError("image must be 2D (gray) or 3D (BGR)")
        ok, buf = cv2.imencode(IMAGE_SUFFIX, image)
        if not ok:
            raise RuntimeError(f"PNG encoding failed for {layer} {key}")
        path, meta_path = self._paths(layer, key, IMAGE_SUFFIX)
        _atomic_write(path, buf.tobytes())
        h, w = image.shape[:2]
        self._write_meta(meta_path, key, w, h, layer, "image", source)
        return path

    def get_image(self, layer: str, key: TileKey) -> Optional[np.ndarray]:
        path, _ = self._paths(layer, key, IMAGE_SUFFIX)
        if not path.is_file():
            return None
        return cv2.imread(str(path), cv2.IMREAD_COLOR)

    def put_heightfield(self, layer: str, key: TileKey, heights: np.ndarray, source: Optional[str] = None) -> Path:
        if heights.ndim != 2:
            raise ValueError("heightfield must be a 2D array")
        h, w = heights.shape
        ext = key.extent
        profile = {
            "driver": "GTiff",
            "height": h,
            "width": w,
            "count": 1,
            "dtype": rasterio.float32,
            "crs": key.profile.srs,
            "transform": from_bounds(ext.min_x, ext.min_y, ext.max_x, ext.max_y, w, h),
            "nodata": np.nan,
        }
        with MemoryFile() as mem:
            with mem.open(**profile) as dst:
                dst.write(heights.astype(np.float32, copy=False), 1)
            data = mem.read()
        path, meta_path = self._paths(layer, key, HEIGHTFIELD_SUFFIX)
        _atomic_write(path, data)
        self._write_meta(meta_path, key, w, h, layer, "elevation", source)
        return path

    def get_heightfield(self, layer: str, key: TileKey) -> Optional[np.ndarray]:
        path, _ = self._paths(layer, key, HEIGHTFIELD_SUFFIX)
        return self.read_heightfield(path)

    def metadata(self, layer: str, z: int, x: int, y: int) -> Optional[Dict]:
        path = self.tile_path(layer, z, x, y, ".json")
        if not path.is_file():
            return None
        return json.loads(path.read_text())

    def iter_tiles(self, layer: str) -> Iterator[Tuple[int, int, int]]:
        """Yield (z, x, y) of every stored tile of a layer, sorted."""
        base = self.root / layer
        if not base.is_dir():
            return
        found = []
        for js in base.glob("*/*/*.json"):
            # Expect .../{z}/{x}/{y}.json
            try:
                found.append((int(js.parent.parent.name), int(js.parent.name), int(js.stem)))
            except ValueError:
                continue
        yield from sorted(found)

    def layers(self) -> list:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir() and _LAYER_RE.match(p.name))

    def stats(self) -> Dict:
        layers: Dict[str, Dict] = {}
        total = 0
        for name in self.layers():
            per_level: Dict[int, int] = {}
            for z, _, _ in self.iter_tiles(name):
                per_level[z] = per_level.get(z, 0) + 1
            n = sum(per_level.values())
            total += n
            layers[name] = {"tiles": n, "levels": per_level}
        return {"root": str(self.root), "tiles": total, "layers": layers}

    @staticmethod
    def read_heightfield(path: Path) -> Optional[np.ndarray]:
        if not Path(path).is_file():
            return None
        with rasterio.open(path) as ds:
            return ds.read(1)

    # -------- internals --------

    def _write_meta(
        self, meta_path: Path, key: TileKey, w: int, h: int, layer: str, kind: str, source: Optional[str]
    ) -> None:
        meta = tile_metadata(key.extent, w, h, key.profile.srs, key.level)
        meta.update({
            "layer": layer,
            "kind": kind,
            "source": source or layer,
            "profile": key.profile.name,
            "quadkey": key.quadkey,
        })
        _atomic_write(meta_path, json.dumps(meta, indent=2).encode("utf-8"))
