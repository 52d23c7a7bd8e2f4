from __future__ import annotations

from typing import Optional


class ProxyError(Exception):
    """
    Terminal failure of one proxied request.

    `message` is the plain-text body sent to the caller; the exception text
    (`str(exc)`) may carry more detail for the logs.
    """

    status_code = 500
    message = "Internal Server Error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.message)


class InvalidTileAddress(ProxyError):
    status_code = 400

    def __init__(self, zoom: str, x: str, y: str):
        self.message = f"Invalid tile address: {zoom}/{x}/{y}"
        super().__init__(self.message)


class MissingUpstreamUrl(ProxyError):
    status_code = 400
    message = "Missing url parameter"


class InvalidUpstreamUrl(ProxyError):
    """`url` is present but cannot be parsed as a URL (e.g. an unclosed IPv6 bracket)."""

    status_code = 400
    message = "Invalid url parameter"


class UpstreamError(ProxyError):
    """Non-200 status, empty body or a broken connection from the ArcGIS server."""

    status_code = 503
    message = "Error from proxied server"


class UpstreamTimeout(UpstreamError):
    """No response headers within the upstream timeout."""
