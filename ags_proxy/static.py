from __future__ import annotations

import hashlib
from functools import cached_property
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional


STATIC_DIR = Path(__file__).with_name("static")

# route path -> (file name, media type)
ASSETS = {
    "/": ("index.html", "text/html; charset=utf-8"),
    "/app.css": ("app.css", "text/css"),
    "/app.js": ("app.js", "text/javascript"),
}


@dataclass(frozen=True)
class StaticAsset:
    """Demo page file held in memory with a strong ETag over its bytes."""
    name: str
    content: bytes
    media_type: str

    @cached_property
    def etag(self) -> str:
        return '"' + hashlib.sha1(self.content).hexdigest() + '"'

    def matches(self, if_none_match: Optional[str]) -> bool:
        """True when an If-None-Match header already names this version."""
        if not if_none_match:
            return False
        tags = [t.strip() for t in if_none_match.split(",")]
        # W/ prefixes are compared weakly, as for GET revalidation
        return "*" in tags or self.etag in [t[2:] if t.startswith("W/") else t for t in tags]


def load_assets(root: Path = STATIC_DIR) -> Dict[str, StaticAsset]:
    out: Dict[str, StaticAsset] = {}
    for route, (name, media_type) in ASSETS.items():
        out[route] = StaticAsset(name=name, content=(root / name).read_bytes(), media_type=media_type)
    return out
