from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from common.logging_setup import setup_logging
from ags_proxy import __version__
from ags_proxy.config import load_config
from ags_proxy.errors import ProxyError
from ags_proxy.middleware import CacheControlMiddleware
from ags_proxy.static import StaticAsset, load_assets
from ags_proxy.tileify import build_export_request, export_url, parse_tile_address
from ags_proxy.upstream import ArcGISExportClient, UpstreamImage


log = logging.getLogger(__name__)


class RelayResponse(StreamingResponse):
    """Streams an upstream image and closes it however the relay ends (done, error or disconnect)."""

    def __init__(self, image: UpstreamImage, **kwargs):
        self.image = image
        super().__init__(image.iter_body(), **kwargs)

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.image.close()


def create_app(config: Optional[Dict] = None, client: Optional[ArcGISExportClient] = None) -> FastAPI:
    """
    Build the proxy application.

    Params:
        config: merged settings (see ags_proxy.config.DEFAULTS); loaded from disk when None
        client: outbound client; built from the `upstream` section when None
    """
    P = config if config is not None else load_config()
    setup_logging(fallback=P.get("logging", {}).get("level"))

    up_cfg = P.get("upstream", {})
    tiles_cfg = P.get("tiles", {})
    http_cfg = P.get("http", {})

    if client is None:
        client = ArcGISExportClient(
            timeout=float(up_cfg.get("timeout_s", 10.0)),
            chunk_size=int(up_cfg.get("chunk_size", 65536)),
        )
    default_params = dict(tiles_cfg.get("default_params") or {})
    pixel_ratio = float(tiles_cfg.get("pixel_ratio", 1))
    use_etag = bool(http_cfg.get("etag", True))
    assets = load_assets()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.client.aclose()

    app = FastAPI(
        title="ArcGIS Server Tile Proxy",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.client = client

    # Added first so CORS wraps it and both apply to every route
    if http_cfg.get("cache_control"):
        app.add_middleware(CacheControlMiddleware, cache_control=str(http_cfg["cache_control"]))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(http_cfg.get("cors_origins", ["*"])),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        if exc.status_code >= 500:
            log.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return PlainTextResponse(
            f"{exc.status_code} {exc.detail}",
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.get("/tiles/{zoom}/{x}/{y}")
    async def tiles(zoom: str, x: str, y: str, request: Request):
        """
        Proxy one XYZ tile from an ArcGIS MapServer export endpoint.

        `url` names the MapServer; every other query pair is passed to export.
        A client disconnect mid-stream stops the relay and closes the upstream
        connection; before that, the fetch is bounded by the upstream timeout.
        """
        tile = parse_tile_address(zoom, x, y)
        req = build_export_request(
            request.query_params.multi_items(),
            default_params=default_params,
            pixel_ratio=pixel_ratio,
        )
        log.info("url query => %s", req.base_url)

        url = export_url(req, tile)
        log.info("For tile %s => url %s", tile, url, extra={"extra": {"z": tile.zoom, "x": tile.x, "y": tile.y}})

        image = await app.state.client.fetch(url)
        headers = {}
        if image.content_type is not None:
            headers["content-type"] = image.content_type
        return RelayResponse(image, status_code=image.status, headers=headers)

    def _asset_response(request: Request, asset: StaticAsset) -> Response:
        if not use_etag:
            return Response(asset.content, media_type=asset.media_type)
        headers = {"ETag": asset.etag}
        if asset.matches(request.headers.get("if-none-match")):
            return Response(status_code=304, headers=headers)
        return Response(asset.content, media_type=asset.media_type, headers=headers)

    @app.get("/favicon.ico")
    def favicon():
        raise HTTPException(status_code=404)

    @app.get("/app.css")
    def app_css(request: Request):
        return _asset_response(request, assets["/app.css"])

    @app.get("/app.js")
    def app_js(request: Request):
        return _asset_response(request, assets["/app.js"])

    @app.get("/")
    def index(request: Request):
        return _asset_response(request, assets["/"])

    return app


def __getattr__(name: str):
    # `app` is built on first access (uvicorn ags_proxy.server:app), so the
    # CLI can load its own --config without touching the default file
    if name == "app":
        global app
        app = create_app(load_config())
        return app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


# -------- local dev entrypoint --------
if __name__ == "__main__":
    P = load_config()
    uvicorn.run(create_app(P), host=P["server"]["host"], port=int(P["server"]["port"]))
