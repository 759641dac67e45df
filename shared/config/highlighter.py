"""
Highlighter runtime configuration.

Loads shared/config/highlighter.json, validates it against a Draft 7 schema
and applies environment overrides. Every failure is a warning: the runtime
always boots with best-effort defaults.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from jsonschema import Draft7Validator

from shared.logging.logger import get_logger

log = get_logger("shared.config.highlighter")

_CONFIG_PATH = Path(__file__).parent / "highlighter.json"

DEFAULT_NAMESPACE = "vpl-yt"
DEFAULT_WS_ORIGIN = "wss://veganpowerlab.com"
DEFAULT_OVERLAY_ORIGIN = "https://veganpowerlab.com"

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "ws_origin": {"type": "string"},
        "overlay_origin": {"type": "string"},
        "default_namespace": {"type": "string"},
        "namespace_path": {"type": "string"},
        "sweep_interval_ms": {"type": "integer", "minimum": 50},
        "reconnect_min_ms": {"type": "integer", "minimum": 0},
        "reconnect_max_ms": {"type": "integer", "minimum": 0},
        "namespace_poll_seconds": {"type": "number", "exclusiveMinimum": 0},
        "watch_url": {"type": ["string", "null"]},
        "headless": {"type": "boolean"},
        "profile_dir": {"type": "string"},
    },
}


@dataclass(frozen=True)
class HighlighterConfig:
    ws_origin: str = DEFAULT_WS_ORIGIN
    overlay_origin: str = DEFAULT_OVERLAY_ORIGIN
    default_namespace: str = DEFAULT_NAMESPACE
    namespace_path: str = "shared/config/namespace.json"
    sweep_interval_ms: int = 500
    reconnect_min_ms: int = 1000
    reconnect_max_ms: int = 10000
    namespace_poll_seconds: float = 1.0
    watch_url: Optional[str] = None
    headless: bool = False
    profile_dir: str = ".browser/youtube"

    @property
    def sweep_interval_seconds(self) -> float:
        return self.sweep_interval_ms / 1000.0


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.warning(f"highlighter.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            log.warning("highlighter.json root is not an object; ignoring")
    except Exception as e:
        log.warning(f"Failed to load highlighter.json ({e}); using defaults")

    return {}


def _schema_errors(payload: Dict[str, Any]) -> Dict[str, str]:
    validator = Draft7Validator(CONFIG_SCHEMA)
    errors: Dict[str, str] = {}
    for err in sorted(validator.iter_errors(payload), key=lambda e: list(e.path)):
        loc = "/".join(str(p) for p in err.path)
        log.warning(f"highlighter config validation warning at '{loc}': {err.message}")
        if err.path:
            errors[str(err.path[0])] = err.message
    return errors


def _valid_origin(value: str, schemes: tuple) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in schemes and bool(parsed.netloc)


def _env_bool(raw: str) -> Optional[bool]:
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return None


def _apply_env(config: HighlighterConfig) -> HighlighterConfig:
    overrides: Dict[str, Any] = {}

    for field_name, env_key in (
        ("ws_origin", "HIGHLIGHTER_WS_ORIGIN"),
        ("overlay_origin", "HIGHLIGHTER_OVERLAY_ORIGIN"),
        ("watch_url", "HIGHLIGHTER_WATCH_URL"),
        ("namespace_path", "HIGHLIGHTER_NAMESPACE_PATH"),
    ):
        value = os.getenv(env_key)
        if value and value.strip():
            overrides[field_name] = value.strip()

    headless_raw = os.getenv("HIGHLIGHTER_HEADLESS")
    if headless_raw is not None:
        headless = _env_bool(headless_raw)
        if headless is None:
            log.warning(f"HIGHLIGHTER_HEADLESS={headless_raw!r} is not a boolean; ignoring")
        else:
            overrides["headless"] = headless

    return replace(config, **overrides) if overrides else config


def _sanitize(config: HighlighterConfig) -> HighlighterConfig:
    defaults = HighlighterConfig()
    fixes: Dict[str, Any] = {}

    if not _valid_origin(config.ws_origin, ("ws", "wss")):
        log.warning(f"ws_origin {config.ws_origin!r} is not a ws:// or wss:// origin; using default")
        fixes["ws_origin"] = defaults.ws_origin

    if not _valid_origin(config.overlay_origin, ("http", "https")):
        log.warning(
            f"overlay_origin {config.overlay_origin!r} is not an http(s) origin; using default"
        )
        fixes["overlay_origin"] = defaults.overlay_origin

    if not config.default_namespace.strip():
        log.warning("default_namespace is blank; using default")
        fixes["default_namespace"] = defaults.default_namespace

    if config.reconnect_min_ms > config.reconnect_max_ms:
        log.warning(
            f"reconnect_min_ms ({config.reconnect_min_ms}) exceeds reconnect_max_ms "
            f"({config.reconnect_max_ms}); using defaults"
        )
        fixes["reconnect_min_ms"] = defaults.reconnect_min_ms
        fixes["reconnect_max_ms"] = defaults.reconnect_max_ms

    if fixes:
        config = replace(config, **fixes)

    return replace(
        config,
        ws_origin=config.ws_origin.rstrip("/"),
        overlay_origin=config.overlay_origin.rstrip("/"),
        default_namespace=config.default_namespace.strip(),
    )


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------

def load_highlighter_config(path: Optional[Path] = None) -> HighlighterConfig:
    """
    Build the runtime configuration.

    Precedence: environment > highlighter.json > built-in defaults. Keys that
    fail schema validation fall back to their defaults individually.
    """
    raw = _load_json(path or _CONFIG_PATH)
    invalid = _schema_errors(raw)

    known = set(HighlighterConfig.__dataclass_fields__)
    values = {
        key: value
        for key, value in raw.items()
        if key in known and key not in invalid
    }

    unknown = sorted(set(raw) - known)
    if unknown:
        log.debug(f"Ignoring unknown highlighter config keys: {unknown}")

    config = HighlighterConfig(**values)
    config = _apply_env(config)
    return _sanitize(config)
