"""Resolve Redash credentials and remember the last credentials file used."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import load_config_file

CACHE_DIR_ENV = "REDASH_DL_CACHE_DIR"
ENDPOINT_ENV = "REDASH_ENDPOINT"
API_KEY_ENV = "REDASH_API_KEY"
CACHE_FILE_NAME = "credentials_path"


@dataclass(frozen=True)
class Credentials:
    endpoint: str
    apikey: str


def cache_file() -> Path:
    base = os.getenv(CACHE_DIR_ENV)
    root = Path(base).expanduser() if base else Path.home() / ".cache" / "redash-dl"
    return root / CACHE_FILE_NAME


def store_cached_path(path: str) -> None:
    target = cache_file()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(str(Path(path).expanduser().resolve()), encoding="utf-8")


def load_cached_path() -> Optional[str]:
    target = cache_file()
    if not target.exists():
        return None
    text = target.read_text(encoding="utf-8").strip()
    return text or None


def clear_cached_path() -> bool:
    target = cache_file()
    if target.exists():
        target.unlink()
        return True
    return False


def read_credentials_file(path: Path) -> Credentials:
    data = load_config_file(path)
    endpoint = data.get("endpoint")
    apikey = data.get("apikey", data.get("api_key"))
    if not isinstance(endpoint, str) or not isinstance(apikey, str) or not endpoint or not apikey:
        raise SystemExit(f"Credentials file {path} must define string 'endpoint' and 'apikey' keys.")
    return Credentials(endpoint=endpoint, apikey=apikey)


def resolve_credentials(
    credentials_path: Optional[str] = None,
    endpoint: Optional[str] = None,
    apikey: Optional[str] = None,
) -> Credentials:
    """Pick credentials from, in order: an explicit file, explicit values,
    environment variables, then the cached file path."""
    if credentials_path:
        return read_credentials_file(Path(credentials_path).expanduser())
    if endpoint and apikey:
        return Credentials(endpoint=endpoint, apikey=apikey)
    env_endpoint = endpoint or os.getenv(ENDPOINT_ENV)
    env_apikey = apikey or os.getenv(API_KEY_ENV)
    if env_endpoint and env_apikey:
        return Credentials(endpoint=env_endpoint, apikey=env_apikey)
    cached = load_cached_path()
    if cached and Path(cached).exists():
        return read_credentials_file(Path(cached))
    raise SystemExit(
        "Missing credentials. Provide --credentials or both --endpoint and --apikey "
        f"(or env vars {ENDPOINT_ENV} and {API_KEY_ENV})."
    )
