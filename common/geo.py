from __future__ import annotations

from typing import Dict, Tuple

from rasterio.warp import transform_bounds

from common.types import Bounds, Profile


# --- Web Mercator constants ---
_MERC_HALF_WORLD = 20037508.342789244   # meters, pi * 6378137
_MERC_MAX_LAT = 85.0511287798066        # latitude where the square world ends


GLOBAL_GEODETIC = Profile(
    name="global-geodetic",
    srs="EPSG:4326",
    extent=Bounds(-180.0, -90.0, 180.0, 90.0),
    geodetic=True,
)

SPHERICAL_MERCATOR = Profile(
    name="spherical-mercator",
    srs="EPSG:3857",
    extent=Bounds(-_MERC_HALF_WORLD, -_MERC_HALF_WORLD, _MERC_HALF_WORLD, _MERC_HALF_WORLD),
    geodetic=False,
)

_PROFILES: Dict[str, Profile] = {
    GLOBAL_GEODETIC.name: GLOBAL_GEODETIC,
    SPHERICAL_MERCATOR.name: SPHERICAL_MERCATOR,
}


def get_profile(name: str) -> Profile:
    """Look a profile up by name ('global-geodetic') or SRS code ('EPSG:3857')."""
    key = str(name).strip()
    if key in _PROFILES:
        return _PROFILES[key]
    for p in _PROFILES.values():
        if p.srs.lower() == key.lower():
            return p
    raise ValueError(f"unknown profile {name!r}; expected one of {sorted(_PROFILES)}")


def bounds_to_profile(bounds: Bounds, src_srs: str, profile: Profile) -> Bounds:
    """
    Reproject a bounding box into the profile's SRS.

    Geographic input headed for mercator is clamped to +/-85.0511 deg first,
    since the poles have no finite mercator coordinate.
    """
    if bounds.is_unset or src_srs.upper() == profile.srs.upper():
        return bounds
    min_x, min_y, max_x, max_y = bounds.as_tuple()
    if src_srs.upper() == "EPSG:4326" and profile.srs.upper() == "EPSG:3857":
        min_y = max(min_y, -_MERC_MAX_LAT)
        max_y = min(max_y, _MERC_MAX_LAT)
    left, bottom, right, top = transform_bounds(src_srs, profile.srs, min_x, min_y, max_x, max_y)
    return Bounds(float(left), float(bottom), float(right), float(top))


def tile_metadata(extent: Bounds, width: int, height: int, srs: str, level: int) -> Dict:
    """
    Georeferencing metadata for a tile image, in the top-left origin schema:
      - top_left_lon, top_left_lat: upper-left corner (profile units)
      - px_size_lon, px_size_lat: units per pixel (lat step is negative)
      - bbox: [min_x, min_y, max_x, max_y]
    """
    return {
        "crs": srs,
        "top_left_lon": extent.min_x,
        "top_left_lat": extent.max_y,
        "px_size_lon": extent.width / float(width),
        "px_size_lat": -extent.height / float(height),
        "width": int(width),
        "height": int(height),
        "zoom": int(level),
        "bbox": list(extent.as_tuple()),
    }


def pix2geo(x: float, y: float, meta: Dict) -> Tuple[float, float]:
    """Pixel (x, y) of a tile described by tile_metadata() -> profile coordinates."""
    gx = float(meta["top_left_lon"]) + x * float(meta["px_size_lon"])
    gy = float(meta["top_left_lat"]) + y * float(meta["px_size_lat"])
    return gx, gy
