from __future__ import annotations

import logging
import os
import sys
import json
import time
from typing import Optional


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON log formatter:
      { "t": 169, "lvl": "INFO", "name": "mod", "msg": "text", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        # logger.info(..., extra={"extra": {...}}) lands on record.extra
        if hasattr(record, "extra") and isinstance(record.extra, dict):  # type: ignore[attr-defined]
            payload["extra"] = record.extra  # type: ignore[attr-defined]
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(
    level: Optional[str] = None,
    *,
    fallback: Optional[str] = None,
    force: bool = False,
) -> None:
    """
    Configure root logger once with JSON formatting.
    Level precedence:
      - explicit `level` arg (e.g. --log-level)
      - env LOG_LEVEL (e.g., DEBUG/INFO/WARNING/ERROR)
      - `fallback` (logging.level from the config file)
      - default INFO

    `force=True` reconfigures an already configured root (the app factory does
    this once the config file has been read).
    """
    root = logging.getLogger()
    if getattr(root, "_ags_proxy_configured", False) and not force:  # idempotent
        return

    lvl_name = (level or os.environ.get("LOG_LEVEL") or fallback or "INFO").upper()
    lvl = logging.getLevelName(lvl_name)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    root._ags_proxy_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)
