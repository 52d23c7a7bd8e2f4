"""
XYZ tile -> ArcGIS MapServer "export" request.

Usage:
    tile = parse_tile_address("4", "3", "2")
    req = build_export_request(query_params, default_params={"transparent": "true"})
    url = export_url(req, tile)
    # .../MapServer/export?bbox=...&bboxSR=3857&imageSR=3857&size=256,256&f=image&transparent=true
"""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from common.geo import output_size, tile_bounds
from common.types import BBox, ExportRequest, TileAddress
from ags_proxy.errors import InvalidTileAddress, InvalidUpstreamUrl, MissingUpstreamUrl


WEB_MERCATOR_WKID = 3857
URL_PARAM = "url"

_DIGITS = re.compile(r"[0-9]+")


def parse_tile_address(zoom: str, x: str, y: str) -> TileAddress:
    """
    Parse `zoom/x/y` path segments. Only plain decimal integers are accepted
    ("+3", " 3", "3.0", "0x3" are all rejected). Large zooms are allowed; the
    extent simply shrinks towards a point.
    """
    raw = (zoom, x, y)
    if not all(_DIGITS.fullmatch(s) for s in raw):
        raise InvalidTileAddress(*raw)
    try:
        z, tx, ty = (int(s) for s in raw)
    except ValueError:
        # longer than the interpreter's int-conversion digit limit
        raise InvalidTileAddress(*raw) from None
    return TileAddress(z, tx, ty)


def build_export_request(
    query: Iterable[Tuple[str, str]],
    *,
    default_params: Optional[Mapping[str, str]] = None,
    pixel_ratio: float = 1,
) -> ExportRequest:
    """
    Split an incoming query string into the MapServer URL and export parameters.

    `url` is percent-decoded once more (clients encode it inside a query value);
    every other pair becomes an export parameter laid over `default_params`.
    Later duplicates of a key win.
    """
    base_url: Optional[str] = None
    params: Dict[str, str] = {str(k): _param_text(v) for k, v in (default_params or {}).items()}
    for key, value in query:
        if key == URL_PARAM:
            base_url = value
        else:
            params[key] = value
    if not base_url:
        raise MissingUpstreamUrl()
    return ExportRequest(base_url=unquote(base_url), params=params, pixel_ratio=pixel_ratio)


def _param_text(v) -> str:
    # YAML turns `transparent: true` into a bool; ArcGIS wants lowercase
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def format_coord(v: float) -> str:
    """Shortest round-tripping text for a coordinate; whole numbers drop the '.0'."""
    v = float(v)
    if v.is_integer():
        return str(int(v))
    return repr(v)


def export_params(req: ExportRequest, bbox: BBox) -> List[Tuple[str, str]]:
    """Ordered export query: fixed spatial/size keys first, then the caller's params."""
    w, h = output_size(req.pixel_ratio)
    out = [
        ("bbox", ",".join(format_coord(v) for v in bbox)),
        ("bboxSR", str(WEB_MERCATOR_WKID)),
        ("imageSR", str(WEB_MERCATOR_WKID)),
        ("size", f"{w},{h}"),
        ("f", "image"),
    ]
    out.extend(req.params.items())
    return out


def export_url(req: ExportRequest, tile: TileAddress) -> str:
    """
    Full export URL for one tile.

    A query string already on the MapServer URL (e.g. `?token=...`) is kept
    and appended after the export parameters.
    """
    try:
        bbox = tile_bounds(tile)
    except OverflowError:
        raise InvalidTileAddress(*(str(v) for v in tile.zxy)) from None

    try:
        scheme, netloc, path, query, _ = urlsplit(req.base_url)
    except ValueError:
        raise InvalidUpstreamUrl(f"unparseable url: {req.base_url!r}") from None
    pairs = export_params(req, bbox) + parse_qsl(query, keep_blank_values=True)
    path = path.rstrip("/") + "/export"
    return urlunsplit((scheme, netloc, path, urlencode(pairs, safe=",:"), ""))
