#!/usr/bin/env python3
"""
Build small demo inputs for config/seed.yaml.

Writes:
- data/demo/imagery.tif: 3-band uint8 EPSG:4326 GeoTIFF (synthetic features, or --src-image resized)
- data/demo/dem.tif:     1-band float32 EPSG:4326 GeoTIFF (smooth hills)

Examples:
  python scripts/make_demo_data.py --bbox -77.12,38.80,-76.90,38.99
  python scripts/make_demo_data.py --bbox -77.12,38.80,-76.90,38.99 --src-image my_sat.png --size 2048
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np
import rasterio
from rasterio.transform import from_bounds

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.utils import parse_floats  # noqa: E402


BBox = Tuple[float, float, float, float]  # lon_min, lat_min, lon_max, lat_max


def synthesize_imagery(size: Tuple[int, int], seed: int = 1234) -> np.ndarray:
    """Feature-rich BGR image: noise, grid, rectangles and circles."""
    w, h = size
    rng = np.random.default_rng(seed)
    base = rng.normal(128, 25, size=(h, w, 3)).clip(0, 255).astype(np.uint8)

    for x in range(0, w, w // 16 or 1):
        cv2.line(base, (x, 0), (x, h - 1), (60, 60, 60), 1)
    for y in range(0, h, h // 16 or 1):
        cv2.line(base, (0, y), (w - 1, y), (60, 60, 60), 1)

    for _ in range(120):
        x1, y1 = rng.integers(0, w), rng.integers(0, h)
        x2, y2 = rng.integers(0, w), rng.integers(0, h)
        color = tuple(int(c) for c in rng.integers(30, 225, size=3))
        cv2.rectangle(base, (int(min(x1, x2)), int(min(y1, y2))), (int(max(x1, x2)), int(max(y1, y2))), color, 2)
    for _ in range(80):
        c = (int(rng.integers(0, w)), int(rng.integers(0, h)))
        r = int(rng.integers(8, max(9, min(w, h) // 10)))
        cv2.circle(base, c, r, (255, 255, 255), 2)
    return base


def write_imagery_tif(path: Path, bgr: np.ndarray, bbox: BBox) -> None:
    h, w = bgr.shape[:2]
    rgb = bgr[..., ::-1]
    profile = {
        "driver": "GTiff",
        "height": h,
        "width": w,
        "count": 3,
        "dtype": rasterio.uint8,
        "crs": "EPSG:4326",
        "transform": from_bounds(*bbox, w, h),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(path, "w", **profile) as dst:
        for i in range(3):
            dst.write(np.ascontiguousarray(rgb[..., i]), i + 1)


def write_dem_tif(path: Path, bbox: BBox, size: Tuple[int, int], base_m: float = 40.0, relief_m: float = 120.0) -> None:
    w, h = size
    yy, xx = np.mgrid[0:h, 0:w].astype(np.float32)
    hills = np.sin(xx / w * 3 * np.pi) * np.cos(yy / h * 2 * np.pi)
    dem = (base_m + relief_m * 0.5 * (hills + 1.0)).astype(np.float32)
    profile = {
        "driver": "GTiff",
        "height": h,
        "width": w,
        "count": 1,
        "dtype": rasterio.float32,
        "crs": "EPSG:4326",
        "transform": from_bounds(*bbox, w, h),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(dem, 1)


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--bbox", required=True, help="lon_min,lat_min,lon_max,lat_max")
    ap.add_argument("--out", default="data/demo", help="Output directory")
    ap.add_argument("--size", type=int, default=1024, help="Imagery width/height in pixels")
    ap.add_argument("--dem-size", type=int, default=256, help="DEM width/height in samples")
    ap.add_argument("--src-image", default="", help="Optional PNG/JPG used as imagery")
    ap.add_argument("--seed", type=int, default=1234, help="Seed for synthetic imagery")
    args = ap.parse_args()

    bbox: BBox = tuple(parse_floats(args.bbox, 4))  # type: ignore[assignment]
    out = Path(args.out)

    if args.src_image:
        img = cv2.imread(args.src_image, cv2.IMREAD_COLOR)
        if img is None:
            raise SystemExit(f"Cannot read image: {args.src_image}")
        img = cv2.resize(img, (args.size, args.size), interpolation=cv2.INTER_AREA)
    else:
        img = synthesize_imagery((args.size, args.size), seed=args.seed)

    write_imagery_tif(out / "imagery.tif", img, bbox)
    print(f"[ok] wrote {out / 'imagery.tif'}")
    write_dem_tif(out / "dem.tif", bbox, (args.dem_size, args.dem_size))
    print(f"[ok] wrote {out / 'dem.tif'}")
    print("Demo inputs ready. Seed the cache with:")
    print("  python -m seeder.cli --config config/seed.yaml")


if __name__ == "__main__":
    main()
