"""
YAML map configuration -> SourceSet + SeedConfig.

Example (config/seed.yaml):

    profile: global-geodetic
    cache:
      root: data/cache
    seed:
      min_level: 0
      max_level: 6
      bounds: [-78.0, 38.0, -76.0, 40.0]
      bounds_srs: EPSG:4326
      level_policy: window
      workers: 4
    image:
      - {name: world, driver: geotiff, path: data/world.tif, max_level: 8}
    elevation:
      - {name: dem, driver: geotiff, path: data/dem/dem.tif, max_level: 8}

Layers are cache-backed unless they say `cache: false`.
"""
from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from common.geo import bounds_to_profile, get_profile
from common.types import Bounds, Profile, SeedConfig
from seeder.levels import get_level_policy
from tile_cache.dem import ConstantElevationSource, GeoTiffElevationSource
from tile_cache.sources import (
    CachedTileSource,
    GeoTiffImageSource,
    SourceSet,
    SyntheticImageSource,
    TileSource,
    XYZImageSource,
)
from tile_cache.store import TileStore


DEFAULT_CONFIG_PATH = "config/seed.yaml"

DEFAULTS: Dict[str, Any] = {
    "profile": "global-geodetic",
    "cache": {"root": "data/cache"},
    "seed": {
        "min_level": 0,
        "max_level": 12,
        "bounds": None,
        "bounds_srs": None,
        "level_policy": "literal",
        "workers": 1,
        "timeout_s": None,
    },
    "logging": {"level": "INFO"},
    "image": [],
    "elevation": [],
}

_IMAGE_DRIVERS: Dict[str, Callable[..., TileSource]] = {
    "geotiff": GeoTiffImageSource,
    "synthetic": SyntheticImageSource,
    "xyz": XYZImageSource,
}

_ELEVATION_DRIVERS: Dict[str, Callable[..., TileSource]] = {
    "geotiff": GeoTiffElevationSource,
    "constant": ConstantElevationSource,
}


def _merge(base: Dict, override: Dict) -> Dict:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: str = DEFAULT_CONFIG_PATH) -> Dict:
    """Read the YAML map config, filled in with DEFAULTS; a missing file yields the defaults."""
    if not Path(path).exists():
        return copy.deepcopy(DEFAULTS)
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return _merge(DEFAULTS, raw)


def _build_layer(entry: Dict, drivers: Dict[str, Callable[..., TileSource]], kind: str, store: TileStore) -> TileSource:
    entry = dict(entry)
    name = entry.get("name")
    if not name:
        raise ValueError(f"{kind} layer without a name: {entry}")
    driver = str(entry.pop("driver", "")).lower()
    if driver not in drivers:
        raise ValueError(f"{kind} layer {name!r}: unknown driver {driver!r}; expected one of {sorted(drivers)}")
    cached = bool(entry.pop("cache", True))

    entry.pop("name")
    # min_level, max_level, tile_size and driver options go straight to the constructor
    src = drivers[driver](name, **entry)
    return CachedTileSource(src, store) if cached else src


def build_sources(P: Dict, store: Optional[TileStore] = None) -> SourceSet:
    profile = get_profile(P.get("profile", DEFAULTS["profile"]))
    store = store or TileStore(P.get("cache", {}).get("root", DEFAULTS["cache"]["root"]))
    names = set()
    images: List[TileSource] = []
    elevations: List[TileSource] = []
    for kind, entries, drivers, out in (
        ("image", P.get("image") or [], _IMAGE_DRIVERS, images),
        ("elevation", P.get("elevation") or [], _ELEVATION_DRIVERS, elevations),
    ):
        for entry in entries:
            src = _build_layer(entry, drivers, kind, store)
            if src.name in names:
                raise ValueError(f"duplicate layer name {src.name!r}")
            names.add(src.name)
            out.append(src)
    return SourceSet(profile=profile, image_sources=images, elevation_sources=elevations)


def parse_bounds(value: Any, profile: Profile, srs: Optional[str] = None) -> Bounds:
    """[min_x, min_y, max_x, max_y] in `srs` (default: the profile's) -> Bounds in profile units."""
    if value is None:
        return Bounds()
    b = Bounds.from_sequence(value)
    return bounds_to_profile(b, srs or profile.srs, profile)


def _as_int(section: Dict, key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool):
        raise ValueError(f"seed.{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"seed.{key} must be an integer, got {value!r}") from None


def _seed_section(P: Dict) -> Dict:
    s = P.get("seed") or {}
    if not isinstance(s, dict):
        raise ValueError(f"seed: must be a mapping, got {type(s).__name__}")
    return s


def seed_config(P: Dict) -> SeedConfig:
    s = _seed_section(P)
    profile = get_profile(P.get("profile", DEFAULTS["profile"]))
    return SeedConfig(
        min_level=_as_int(s, "min_level", 0),
        max_level=_as_int(s, "max_level", 12),
        bounds=parse_bounds(s.get("bounds"), profile, s.get("bounds_srs")),
    )


def seed_options(P: Dict) -> Dict[str, Any]:
    """level_policy, workers and timeout_s from the seed section, checked before any work starts."""
    s = _seed_section(P)
    policy = s.get("level_policy") or "literal"
    get_level_policy(policy)

    workers = 1 if s.get("workers") is None else _as_int(s, "workers", 1)
    if workers < 1:
        raise ValueError(f"seed.workers must be >= 1, got {workers}")

    timeout_s = s.get("timeout_s")
    if timeout_s is not None:
        try:
            timeout_s = float(timeout_s)
        except (TypeError, ValueError):
            raise ValueError(f"seed.timeout_s must be a number of seconds, got {timeout_s!r}") from None
        if timeout_s < 0:
            raise ValueError(f"seed.timeout_s must be >= 0, got {timeout_s}")

    return {"level_policy": str(policy), "workers": workers, "timeout_s": timeout_s}
