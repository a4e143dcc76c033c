from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Bounds:
    """
    Axis-aligned rectangle in profile units (degrees for geodetic, meters for mercator).

    The all-zero rectangle is the "unset" sentinel: seeding replaces it with the
    full profile extent. A real zero-size bound at the origin cannot be expressed.
    """
    min_x: float = 0.0
    min_y: float = 0.0
    max_x: float = 0.0
    max_y: float = 0.0

    def __post_init__(self) -> None:
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise ValueError(f"inverted bounds: {self.as_tuple()}")

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> "Bounds":
        if len(values) != 4:
            raise ValueError("bounds need exactly 4 values: min_x, min_y, max_x, max_y")
        return cls(*(float(v) for v in values))

    @property
    def is_unset(self) -> bool:
        return self.min_x == 0 and self.min_y == 0 and self.max_x == 0 and self.max_y == 0

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    def intersects(self, other: "Bounds") -> bool:
        """Edge-inclusive overlap test: rectangles sharing only an edge or corner intersect."""
        return (
            self.min_x <= other.max_x
            and other.min_x <= self.max_x
            and self.min_y <= other.max_y
            and other.min_y <= self.max_y
        )


@dataclass(frozen=True)
class Profile:
    """
    Tiling scheme of the pyramid.

    Geodetic profiles start with one globe-wide placeholder at level 0 whose
    children are the two hemispheres, so level L >= 1 has 2^L x 2^(L-1) tiles.
    Other profiles split the root into 4 and have 2^L x 2^L tiles at level L.
    """
    name: str
    srs: str
    extent: Bounds
    geodetic: bool = False

    def tiles_across(self, level: int) -> Tuple[int, int]:
        if level < 0:
            raise ValueError(f"invalid level: {level}")
        if self.geodetic:
            if level == 0:
                return (1, 1)
            return (1 << level, 1 << (level - 1))
        return (1 << level, 1 << level)

    def tile_extent(self, level: int, x: int, y: int) -> Bounds:
        nx, ny = self.tiles_across(level)
        w = self.extent.width / nx
        h = self.extent.height / ny
        min_x = self.extent.min_x + x * w
        max_y = self.extent.max_y - y * h
        return Bounds(min_x, max_y - h, min_x + w, max_y)

    def root_key(self) -> "TileKey":
        return TileKey(level=0, x=0, y=0, profile=self)


@dataclass(frozen=True)
class TileKey:
    """A node of the pyramid: level, column and row (row 0 at the profile's top edge)."""
    level: int
    x: int
    y: int
    profile: Profile = field(repr=False, compare=True)

    def __post_init__(self) -> None:
        nx, ny = self.profile.tiles_across(self.level)
        if not (0 <= self.x < nx and 0 <= self.y < ny):
            raise ValueError(f"tile {self.level}/{self.x}/{self.y} outside {self.profile.name}")

    def __str__(self) -> str:
        return f"{self.level}/{self.x}/{self.y}"

    @property
    def extent(self) -> Bounds:
        return self.profile.tile_extent(self.level, self.x, self.y)

    @property
    def is_geodetic(self) -> bool:
        return self.profile.geodetic

    @property
    def is_geodetic_root(self) -> bool:
        return self.profile.geodetic and self.level == 0

    @property
    def quadkey(self) -> str:
        """Quadrant digits from the root down; '' for the root itself."""
        digits: List[str] = []
        x, y = self.x, self.y
        for lvl in range(self.level, 0, -1):
            if self.profile.geodetic and lvl == 1:
                digits.append(str(x))
            else:
                digits.append(str((x & 1) | ((y & 1) << 1)))
            x >>= 1
            y >>= 1
        return "".join(reversed(digits))

    def child(self, quadrant: int) -> Optional["TileKey"]:
        """
        Child in quadrant 0..3 (upper-left, upper-right, lower-left, lower-right).
        The geodetic root only has children 0 (west) and 1 (east).
        """
        if quadrant not in (0, 1, 2, 3):
            raise ValueError(f"quadrant must be 0..3, got {quadrant}")
        if self.is_geodetic_root:
            if quadrant > 1:
                return None
            return TileKey(level=1, x=quadrant, y=0, profile=self.profile)
        return TileKey(
            level=self.level + 1,
            x=self.x * 2 + (quadrant & 1),
            y=self.y * 2 + (quadrant >> 1),
            profile=self.profile,
        )

    def children(self) -> List["TileKey"]:
        out: List[TileKey] = []
        for q in range(4):
            k = self.child(q)
            if k is not None:
                out.append(k)
        return out


@dataclass
class SeedConfig:
    """
    User-requested seeding window.

    Attributes:
        min_level: lowest level that gets materialized (descent still starts at 0).
        max_level: deepest level; may be lowered to what the caches support.
        bounds: region to seed; Bounds() means the whole profile.
    """
    min_level: int = 0
    max_level: int = 12
    bounds: Bounds = field(default_factory=Bounds)

    def __post_init__(self) -> None:
        if self.min_level < 0 or self.max_level < 0:
            raise ValueError("levels must be >= 0")
        if self.min_level > self.max_level:
            raise ValueError(f"min_level {self.min_level} > max_level {self.max_level}")
