"""
Unit tests for the FastAPI app with a stubbed ArcGIS server
"""

from unittest.mock import AsyncMock, Mock
from urllib.parse import parse_qsl, quote, urlencode, urlsplit

import anyio
import httpx
import pytest
from fastapi.testclient import TestClient

from ags_proxy.config import DEFAULTS, merge_config
from ags_proxy.server import create_app
from ags_proxy.upstream import ArcGISExportClient, UpstreamImage
from common.geo import ORIGIN_SHIFT
from tests.fakes import PNG, FakeArcGIS, RecordingStream


MAPSERVER = "https://example.com/arcgis/rest/services/Foo/MapServer"


def _make(upstream=None, **overrides):
    upstream = upstream or FakeArcGIS()
    config = merge_config(DEFAULTS, overrides)
    app = create_app(config, client=ArcGISExportClient(client=upstream.client()))
    return TestClient(app), upstream


def _upstream_query(upstream):
    url = upstream.last_url
    return url, dict(parse_qsl(urlsplit(url).query))


def _tile_scope(path, query):
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": urlencode(query).encode(),
        "headers": [(b"host", b"testserver")],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }


class TestTileRoute:
    """GET /tiles/{zoom}/{x}/{y}"""

    def test_missing_url(self):
        client, upstream = _make()
        r = client.get("/tiles/4/3/2")
        assert r.status_code == 400
        assert r.text == "Missing url parameter"
        assert upstream.requests == []

    def test_invalid_tile_address(self):
        client, upstream = _make()
        r = client.get("/tiles/four/3/2", params={"url": MAPSERVER})
        assert r.status_code == 400
        assert r.text == "Invalid tile address: four/3/2"
        assert upstream.requests == []

    def test_unparseable_url(self):
        """An unclosed IPv6 bracket in `url` is a client error, not a crash"""
        client, upstream = _make()
        r = client.get("/tiles/4/3/2", params={"url": "http://[::1"})
        assert r.status_code == 400
        assert r.text == "Invalid url parameter"
        assert upstream.requests == []

    def test_large_zoom_accepted(self):
        client, upstream = _make()
        r = client.get("/tiles/40/3/2", params={"url": MAPSERVER})
        assert r.status_code == 200
        assert len(upstream.requests) == 1

    def test_image_relayed(self):
        client, upstream = _make()
        r = client.get("/tiles/4/3/2", params={"url": MAPSERVER})
        assert r.status_code == 200
        assert r.content == PNG
        assert r.headers["content-type"] == "image/png"
        assert upstream.streams[-1].closed

    def test_status_and_close_from_image(self):
        """The response carries the upstream image's status and closes it when done"""
        image = UpstreamImage(
            status=200,
            content_type="image/png",
            first_chunk=PNG[:8],
            rest=RecordingStream([PNG[8:]]).__aiter__(),
            response=Mock(aclose=AsyncMock()),
        )
        client = Mock(spec=ArcGISExportClient)
        client.fetch = AsyncMock(return_value=image)
        r = TestClient(create_app(DEFAULTS, client=client)).get("/tiles/4/3/2", params={"url": MAPSERVER})

        assert r.status_code == image.status
        assert r.content == PNG
        image.response.aclose.assert_awaited()

    def test_upstream_request(self):
        """The outbound call targets MapServer/export for the tile's extent"""
        client, upstream = _make()
        client.get("/tiles/4/3/2", params={"url": MAPSERVER, "layers": "show:14"})

        url, query = _upstream_query(upstream)
        assert upstream.requests[-1].method == "GET"
        assert url.startswith(MAPSERVER + "/export?bbox=")
        assert query["bboxSR"] == "3857"
        assert query["imageSR"] == "3857"
        assert query["size"] == "256,256"
        assert query["f"] == "image"
        assert query["transparent"] == "true"
        assert query["layers"] == "show:14"

    def test_world_tile_bbox(self):
        client, upstream = _make()
        client.get("/tiles/0/0/0", params={"url": MAPSERVER})
        _, query = _upstream_query(upstream)
        bbox = [float(v) for v in query["bbox"].split(",")]
        assert bbox == pytest.approx([-ORIGIN_SHIFT, -ORIGIN_SHIFT, ORIGIN_SHIFT, ORIGIN_SHIFT])

    def test_encoded_url_param(self):
        """A doubly encoded MapServer URL (as the demo page builds it) is decoded"""
        client, upstream = _make()
        r = client.get("/tiles/1/0/0?url=" + quote(quote(MAPSERVER, safe=""), safe=""))
        assert r.status_code == 200
        assert _upstream_query(upstream)[0].startswith(MAPSERVER + "/export?")

    def test_query_overrides_transparent(self):
        client, upstream = _make()
        client.get("/tiles/1/0/0", params={"url": MAPSERVER, "transparent": "false"})
        url, query = _upstream_query(upstream)
        assert query["transparent"] == "false"
        assert "transparent=true" not in url

    def test_configured_pixel_ratio(self):
        client, upstream = _make(tiles={"pixel_ratio": 2, "default_params": {"transparent": "true"}})
        client.get("/tiles/1/0/0", params={"url": MAPSERVER})
        assert _upstream_query(upstream)[1]["size"] == "512,512"

    def test_configured_timeout(self):
        app = create_app(merge_config(DEFAULTS, {"upstream": {"timeout_s": 3.0, "chunk_size": 1024}}))
        assert app.state.client.timeout == 3.0
        assert app.state.client.chunk_size == 1024
        assert app.state.client.client.timeout.read == 3.0

    def test_client_closed_on_shutdown(self):
        client, upstream = _make()
        with client:
            client.get("/tiles/1/0/0", params={"url": MAPSERVER})
        assert client.app.state.client.client.is_closed

    def test_upstream_500(self):
        client, upstream = _make(FakeArcGIS(status=500, body=b"boom", content_type="text/html"))
        r = client.get("/tiles/4/3/2", params={"url": MAPSERVER})
        assert r.status_code == 503
        assert r.text == "Error from proxied server"
        assert "cache-control" not in r.headers
        assert upstream.streams[-1].closed

    def test_upstream_empty_body(self):
        client, _ = _make(FakeArcGIS(body=b""))
        r = client.get("/tiles/4/3/2", params={"url": MAPSERVER})
        assert r.status_code == 503
        assert r.text == "Error from proxied server"

    def test_upstream_timeout(self):
        client, _ = _make(FakeArcGIS(error=httpx.ReadTimeout("slow")))
        r = client.get("/tiles/4/3/2", params={"url": MAPSERVER})
        assert r.status_code == 503
        assert r.text == "Error from proxied server"

    def test_upstream_unreachable(self):
        client, _ = _make(FakeArcGIS(error=httpx.ConnectError("refused")))
        r = client.get("/tiles/4/3/2", params={"url": MAPSERVER})
        assert r.status_code == 503

    def test_untyped_upstream_body(self):
        """No content-type is invented when upstream sent none"""
        client, _ = _make(FakeArcGIS(content_type=None))
        r = client.get("/tiles/4/3/2", params={"url": MAPSERVER})
        assert r.status_code == 200
        assert "content-type" not in r.headers
        assert r.content == PNG

    @pytest.mark.anyio
    async def test_client_disconnect_closes_upstream(self):
        """Leaving mid-stream stops the relay and closes the upstream connection"""
        stream = RecordingStream([PNG[:16]], stall=True)
        upstream = FakeArcGIS(stream=stream)
        app = create_app(DEFAULTS, client=ArcGISExportClient(client=upstream.client()))

        body_started = anyio.Event()
        sent = []

        async def receive():
            await body_started.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            sent.append(message)
            if message["type"] == "http.response.body" and message.get("body"):
                body_started.set()

        with anyio.fail_after(5):
            await app(_tile_scope("/tiles/1/0/0", {"url": MAPSERVER}), receive, send)

        assert sent[0]["type"] == "http.response.start"
        assert sent[0]["status"] == 200
        assert sent[1]["body"] == PNG[:16]
        assert stream.closed

    def test_cache_and_cors_headers(self):
        client, _ = _make()
        r = client.get("/tiles/4/3/2", params={"url": MAPSERVER}, headers={"Origin": "https://www.openstreetmap.org"})
        assert r.headers["cache-control"] == "public, max-age=604800"
        assert r.headers["access-control-allow-origin"] == "*"

    def test_cors_preflight(self):
        client, _ = _make()
        r = client.options(
            "/tiles/4/3/2",
            headers={"Origin": "https://example.org", "Access-Control-Request-Method": "GET"},
        )
        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == "*"

    def test_post_not_allowed(self):
        client, _ = _make()
        r = client.post("/tiles/4/3/2", params={"url": MAPSERVER})
        assert r.status_code == 405
        assert r.text == "405 Method Not Allowed"


class TestStaticRoutes:
    """Demo page and friends"""

    def test_index(self):
        client, _ = _make()
        r = client.get("/")
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/html")
        assert "<title>ArcGIS Server Proxy</title>" in r.text
        assert r.headers["cache-control"] == "public, max-age=604800"

    def test_css(self):
        client, _ = _make()
        r = client.get("/app.css")
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/css")
        assert "#map" in r.text

    def test_js(self):
        client, _ = _make()
        r = client.get("/app.js")
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/javascript")
        assert "/tiles/{z}/{x}/{y}" in r.text

    def test_etag_revalidation(self):
        client, _ = _make()
        first = client.get("/app.js")
        etag = first.headers["etag"]
        again = client.get("/app.js", headers={"If-None-Match": etag})
        assert again.status_code == 304
        assert again.content == b""
        assert again.headers["etag"] == etag

    def test_stale_etag(self):
        client, _ = _make()
        r = client.get("/app.css", headers={"If-None-Match": '"not-it"'})
        assert r.status_code == 200

    def test_etag_disabled(self):
        client, _ = _make(http={"etag": False, "cache_control": "public, max-age=604800", "cors_origins": ["*"]})
        assert "etag" not in client.get("/").headers

    def test_favicon(self):
        client, _ = _make()
        r = client.get("/favicon.ico")
        assert r.status_code == 404
        assert r.text == "404 Not Found"
        assert "cache-control" not in r.headers

    def test_unknown_route(self):
        client, _ = _make()
        r = client.get("/nope")
        assert r.status_code == 404
        assert r.text == "404 Not Found"

    def test_no_openapi(self):
        client, _ = _make()
        assert client.get("/docs").status_code == 404
        assert client.get("/openapi.json").status_code == 404
