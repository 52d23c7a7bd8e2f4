"""
ArcGIS Server tile proxy

- Serves /tiles/{z}/{x}/{y}?url=<MapServer> by translating the XYZ tile into an
  ArcGIS "export map" request and streaming the rendered image back
- Serves a Leaflet demo page at / (app.css, app.js)
"""
from __future__ import annotations

__version__ = "1.0.0"
