#!/usr/bin/env python3
"""
Run the ArcGIS tile proxy.

Examples:
  python -m ags_proxy
  python -m ags_proxy --config config/params.yaml --port 8080
  LOG_LEVEL=DEBUG python -m ags_proxy
"""
from __future__ import annotations

import argparse

import uvicorn

from common.logging_setup import get_logger, setup_logging
from ags_proxy.config import load_config, merge_config
from ags_proxy.server import create_app


def main() -> None:
    ap = argparse.ArgumentParser(description="Slippy-map tiles from an uncached ArcGIS Server map")
    ap.add_argument("--config", default=None, help="YAML settings file (default: $AGS_PROXY_CONFIG or config/params.yaml)")
    ap.add_argument("--host", default=None, help="Bind address (overrides server.host)")
    ap.add_argument("--port", type=int, default=None, help="Bind port (overrides server.port)")
    ap.add_argument("--timeout", type=float, default=None, help="Upstream timeout in seconds (overrides upstream.timeout_s)")
    ap.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR (overrides LOG_LEVEL and logging.level)")
    args = ap.parse_args()

    P = load_config(args.config)
    overrides = {}
    if args.host is not None or args.port is not None:
        overrides["server"] = {k: v for k, v in (("host", args.host), ("port", args.port)) if v is not None}
    if args.timeout is not None:
        overrides["upstream"] = {"timeout_s": args.timeout}
    P = merge_config(P, overrides)

    setup_logging(args.log_level, fallback=P["logging"].get("level"), force=True)
    log = get_logger("ags_proxy")

    app = create_app(P)
    host, port = P["server"]["host"], int(P["server"]["port"])
    log.info("Tile proxy running on http://%s:%d/tiles/{z}/{x}/{y}?url=...", host, port)
    # keep our JSON root handler instead of uvicorn's own logging config
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
