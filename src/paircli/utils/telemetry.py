"""Structured command events appended to ``<home>/logs/telemetry.jsonl``."""

from __future__ import annotations

import json
import os
import time
from functools import lru_cache
from typing import Any

from jsonschema import Draft202012Validator

from paircli.resources import load_json_resource
from paircli.settings import RuntimeSettings

TELEMETRY_ENV = "PAIR_TELEMETRY"
LEVELS = {"info", "warn", "error"}

_DISABLE_VALUES = {"0", "false", "no", "off"}


def telemetry_enabled() -> bool:
    value = os.getenv(TELEMETRY_ENV, "1").lower()
    return value not in _DISABLE_VALUES


def telemetry_path(settings: RuntimeSettings):
    return settings.log_dir / "telemetry.jsonl"


def record_event(
    settings: RuntimeSettings,
    event: str,
    payload: dict[str, Any] | None = None,
    *,
    level: str = "info",
    status: str | None = None,
    component: str | None = None,
    duration_ms: float | None = None,
) -> None:
    if not telemetry_enabled():
        return
    record: dict[str, Any] = {
        "ts": time.time(),
        "event": event,
        "payload": payload or {},
        "level": level,
    }
    if status:
        record["status"] = status
    if component:
        record["component"] = component
    if duration_ms is not None:
        record["durationMs"] = duration_ms
    _validate_record(record)
    _validator().validate(record)
    log_path = telemetry_path(settings)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")


def _validate_record(record: dict[str, Any]) -> None:
    if not isinstance(record.get("event"), str) or not record["event"].strip():
        raise ValueError("Telemetry event must have non-empty string 'event'")
    if record.get("level") not in LEVELS:
        raise ValueError(f"Telemetry level '{record.get('level')}' is not supported")
    record["payload"] = json.loads(json.dumps(record["payload"], default=str))


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    return Draft202012Validator(load_json_resource("telemetry.schema.json"))


__all__ = ["record_event", "telemetry_enabled", "telemetry_path"]
