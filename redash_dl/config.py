"""Config-file defaults and query parameter parsing for the CLI."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .client import InvalidInput, render_value


def load_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise SystemExit(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    raw = path.read_text(encoding="utf-8")
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(raw)
    elif suffix == ".json":
        data = json.loads(raw)
    else:
        raise SystemExit("Unsupported config file extension. Use .yaml/.yml or .json.")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SystemExit("Config root must be a mapping/object.")
    return data


def flatten_config(data: Dict[str, Any]) -> Dict[str, Any]:
    flattened: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            for nested_key, nested_value in value.items():
                flattened[f"{key}_{nested_key}"] = nested_value
        else:
            flattened[key] = value
    return flattened


def _coerce_config_int(value: object, key: str) -> int:
    if isinstance(value, bool):
        raise SystemExit(f"Config key '{key}' must be an integer.")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise SystemExit(f"Config key '{key}' must be an integer.") from exc


def _coerce_config_float(value: object, key: str) -> float:
    if isinstance(value, bool):
        raise SystemExit(f"Config key '{key}' must be a number.")
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise SystemExit(f"Config key '{key}' must be a number.") from exc


def config_to_parser_defaults(config_data: Dict[str, Any]) -> Dict[str, Any]:
    cfg = flatten_config(config_data)
    defaults: Dict[str, Any] = {}
    string_map = {
        "endpoint": "endpoint",
        "credentials_endpoint": "endpoint",
        "apikey": "apikey",
        "api_key": "apikey",
        "credentials_apikey": "apikey",
        "credentials_api_key": "apikey",
        "credentials": "credentials",
        "credentials_path": "credentials",
    }
    int_map = {
        "max_age": "max_age",
        "download_max_age": "max_age",
        "concurrency": "concurrency",
        "download_concurrency": "concurrency",
        "network_concurrency": "concurrency",
        "limit": "limit",
        "download_limit": "limit",
        "max_iterations": "maxiter",
        "maxiter": "maxiter",
        "download_max_iterations": "maxiter",
    }
    float_map = {
        "timeout_seconds": "timeout_seconds",
        "network_timeout_seconds": "timeout_seconds",
        "query_timeout_seconds": "query_timeout_seconds",
        "network_query_timeout_seconds": "query_timeout_seconds",
        "download_query_timeout_seconds": "query_timeout_seconds",
    }
    for source_key, target_key in string_map.items():
        if source_key in cfg and cfg[source_key] is not None:
            defaults[target_key] = str(cfg[source_key])
    for source_key, target_key in int_map.items():
        if source_key in cfg:
            defaults[target_key] = _coerce_config_int(cfg[source_key], source_key)
    for source_key, target_key in float_map.items():
        if source_key in cfg:
            defaults[target_key] = _coerce_config_float(cfg[source_key], source_key)
    return defaults


def parse_params(text: Optional[str]) -> Dict[str, str]:
    """Parse a JSON object of query parameters into string key/value pairs."""
    if text is None or not text.strip():
        return {}
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise InvalidInput(f"Invalid params JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidInput("Params must be a JSON object, e.g. '{\"country\": \"DE\"}'.")
    return {str(key): render_value(value) for key, value in payload.items()}
