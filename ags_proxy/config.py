from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Dict, Optional

import yaml


CONFIG_ENV = "AGS_PROXY_CONFIG"
DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict = {
    "server": {"host": "0.0.0.0", "port": 8787},
    "upstream": {"timeout_s": 10.0, "chunk_size": 65536},
    "tiles": {"pixel_ratio": 1, "default_params": {"transparent": "true"}},
    "http": {
        "cors_origins": ["*"],
        "cache_control": "public, max-age=604800",  # 7 days
        "etag": True,
    },
    "logging": {"level": "INFO"},
}


def load_config(path: Optional[str] = None) -> Dict:
    """
    Read the YAML config and lay it over DEFAULTS, one section at a time.

    Path precedence: explicit arg, env AGS_PROXY_CONFIG, config/params.yaml.
    A missing file is not an error; the defaults reproduce the stock proxy.
    """
    path = path or os.environ.get(CONFIG_ENV) or DEFAULT_CONFIG_PATH
    cfg = copy.deepcopy(DEFAULTS)
    if not Path(path).exists():
        return cfg
    with open(path, "r") as f:
        user = yaml.safe_load(f) or {}
    if not isinstance(user, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return merge_config(cfg, user)


def merge_config(base: Dict, overrides: Dict) -> Dict:
    """Shallow-merge each section of `overrides` into a copy of `base`."""
    out = copy.deepcopy(base)
    for section, values in overrides.items():
        if isinstance(values, dict) and isinstance(out.get(section), dict):
            out[section].update(values)
        else:
            out[section] = values
    return out
