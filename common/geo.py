from __future__ import annotations

from typing import Tuple
import math

from common.types import BBox, TileAddress


# --- Web Mercator (EPSG:3857) constants ---
ORIGIN_SHIFT = 20037508.3427892   # half the world extent (m) on either axis
TILE_SIZE = 256                   # pixels per tile side at pixel ratio 1
MAX_LAT = 85.0511287798066        # latitude where the square world ends


# -------------------------
# Tile <-> projected extent
# -------------------------
def tile_span_m(zoom: int) -> float:
    """Side length (m) of one tile at `zoom`; halves with every level."""
    return math.ldexp(2.0 * ORIGIN_SHIFT, -int(zoom))


def tile_bounds(tile: TileAddress) -> BBox:
    """
    EPSG:3857 bounding box (minx, miny, maxx, maxy) of an XYZ tile.

    Row 0 is the northern edge, so y grows downward while northing shrinks.
    """
    span = tile_span_m(tile.zoom)
    minx = -ORIGIN_SHIFT + tile.x * span
    maxy = ORIGIN_SHIFT - tile.y * span
    return (minx, maxy - span, minx + span, maxy)


def bbox_center(bbox: BBox) -> Tuple[float, float]:
    minx, miny, maxx, maxy = bbox
    return (0.5 * (minx + maxx), 0.5 * (miny + maxy))


def output_size(pixel_ratio: float) -> Tuple[int, int]:
    """Pixel (width, height) of a square tile rendered at `pixel_ratio`."""
    side = int(round(TILE_SIZE * pixel_ratio))
    return (side, side)


# -------------------------
# Projected <-> geographic
# -------------------------
def mercator_to_lonlat(mx: float, my: float) -> Tuple[float, float]:
    """Spherical Mercator meters to lon/lat (deg)."""
    lon = mx / ORIGIN_SHIFT * 180.0
    lat = math.degrees(2.0 * math.atan(math.exp(my / ORIGIN_SHIFT * math.pi)) - math.pi / 2.0)
    return lon, lat


def lonlat_to_mercator(lon: float, lat: float) -> Tuple[float, float]:
    """lon/lat (deg) to spherical Mercator meters; latitude is clamped to the square world."""
    lat = max(-MAX_LAT, min(MAX_LAT, lat))
    mx = lon * ORIGIN_SHIFT / 180.0
    my = math.log(math.tan((90.0 + lat) * math.pi / 360.0)) * ORIGIN_SHIFT / math.pi
    return mx, my


def lonlat_to_tile(lon: float, lat: float, zoom: int) -> TileAddress:
    """
    XYZ tile containing (lon, lat) at `zoom`.

    Points on the east/south world edge are folded into the last column/row.
    """
    n = 2 ** int(zoom)
    lat = max(-MAX_LAT, min(MAX_LAT, lat))
    s = math.sin(math.radians(lat))
    fx = (lon + 180.0) / 360.0
    fy = 0.5 - math.log((1 + s) / (1 - s)) / (4 * math.pi)
    x = min(n - 1, max(0, int(math.floor(fx * n))))
    y = min(n - 1, max(0, int(math.floor(fy * n))))
    return TileAddress(int(zoom), x, y)


def tile_center_lonlat(tile: TileAddress) -> Tuple[float, float]:
    """lon/lat (deg) of the projected center of a tile."""
    return mercator_to_lonlat(*bbox_center(tile_bounds(tile)))
