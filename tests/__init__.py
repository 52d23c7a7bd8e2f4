"""
ags-tile-proxy test suite

Structure:
- unit/: tile math, export URL building, upstream client and app routes with a stubbed session
- integration/: the app against a local threaded HTTP server standing in for ArcGIS
"""
