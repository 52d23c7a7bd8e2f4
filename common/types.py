from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple


# (minx, miny, maxx, maxy) in EPSG:3857 meters
BBox = Tuple[float, float, float, float]


@dataclass(frozen=True, slots=True)
class TileAddress:
    """
    One tile in the XYZ slippy-map scheme (origin top-left, 2**zoom tiles per axis).

    The 0 <= x, y < 2**zoom range is not enforced: out-of-range columns/rows
    still describe a well-formed (if meaningless) Web-Mercator extent.
    """
    zoom: int
    x: int
    y: int

    def __post_init__(self) -> None:
        if min(self.zoom, self.x, self.y) < 0:
            raise ValueError("tile coordinates must be non-negative")

    @property
    def zxy(self) -> Tuple[int, int, int]:
        return (self.zoom, self.x, self.y)

    def __str__(self) -> str:
        return f"{self.zoom}/{self.x}/{self.y}"


@dataclass(slots=True)
class ExportRequest:
    """
    Per-request description of an ArcGIS MapServer export call.

    Attributes:
        base_url: MapServer endpoint, e.g. ".../rest/services/Foo/MapServer".
        params: extra export parameters ("transparent" -> "true", "layers" -> "show:14").
        pixel_ratio: output scale factor (2 for high-DPI tiles).
    """
    base_url: str
    params: Dict[str, str] = field(default_factory=dict)
    pixel_ratio: float = 1

    def __post_init__(self) -> None:
        if self.pixel_ratio <= 0:
            raise ValueError("pixel_ratio must be positive")
