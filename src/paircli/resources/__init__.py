"""Packaged resources for pair: JSON schemas and the default registry config."""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any, Dict

__all__ = ["load_json_resource", "default_registry_payload"]


@lru_cache(maxsize=None)
def load_json_resource(name: str) -> Dict[str, Any]:
    """Return a parsed JSON document shipped alongside this package."""

    resource = resources.files(__name__) / name
    with resource.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def default_registry_payload() -> Dict[str, Any]:
    return json.loads(json.dumps(load_json_resource("config.json")))
