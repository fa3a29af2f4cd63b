from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .constants import DEFAULT_JETSTREAM_URL, DEFAULT_SERVICE_URL, PROFILE_COLLECTION
from .errors import ConfigError


def _get_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip() or default


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def with_wanted_collection(url: str, collection: str = PROFILE_COLLECTION) -> str:
    """Append ``wantedCollections`` to a Jetstream URL unless one is already set."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(k == "wantedCollections" for k, _ in query):
        return url
    query.append(("wantedCollections", collection))
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass(frozen=True)
class Settings:
    jetstream_url: str
    service_url: str
    identifier: str
    password: str
    blocklist_uri: str
    watchlist_path: str
    dry_run: bool
    dispatch_queue_size: int
    api_max_retries: int
    api_timeout_seconds: float
    shutdown_timeout_seconds: float
    log_level: str
    health_server_enabled: bool = False
    port: int = 10000


def load_settings() -> Settings:
    dry_run = _get_bool("DRY_RUN", False)

    blocklist_uri = _get_str("BLOCKLIST_URI")
    if not blocklist_uri:
        raise ConfigError("BLOCKLIST_URI is required")
    if not blocklist_uri.startswith("at://"):
        raise ConfigError("BLOCKLIST_URI must be an at:// URI")

    identifier = _get_str("BSKY_IDENTIFIER")
    password = _get_str("BSKY_PASSWORD")
    if not dry_run and not (identifier and password):
        raise ConfigError("BSKY_IDENTIFIER and BSKY_PASSWORD are required unless DRY_RUN is set")

    return Settings(
        jetstream_url=with_wanted_collection(_get_str("JETSTREAM_WS_URL", DEFAULT_JETSTREAM_URL)),
        service_url=_get_str("BSKY_SERVICE_URL", DEFAULT_SERVICE_URL).rstrip("/"),
        identifier=identifier,
        password=password,
        blocklist_uri=blocklist_uri,
        watchlist_path=_get_str("WATCHLIST_PATH"),
        dry_run=dry_run,
        dispatch_queue_size=max(1, _get_int("DISPATCH_QUEUE_SIZE", 100)),
        api_max_retries=max(0, _get_int("API_MAX_RETRIES", 2)),
        api_timeout_seconds=max(0.1, _get_float("API_TIMEOUT_SECONDS", 10.0)),
        shutdown_timeout_seconds=max(0.0, _get_float("SHUTDOWN_TIMEOUT_SECONDS", 5.0)),
        log_level=_get_str("LOG_LEVEL", "INFO"),
        health_server_enabled=_get_bool("HEALTH_SERVER_ENABLED", False),
        port=_get_int("PORT", 10000),
    )
