# === NAVMAP v1 ===
# {
#   "module": "ExchangeLab.CumulativeUpdate.net",
#   "purpose": "Provide a shared HTTPX client for installer downloads",
#   "sections": [
#     {"id": "constants", "name": "Constants & globals", "anchor": "CONST", "kind": "constants"},
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Public API", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Shared HTTPX client used by the installer fetcher."""

from __future__ import annotations

import contextlib
import logging
import ssl
import threading
import time
import uuid
from typing import Callable, MutableMapping, Optional

import certifi
import httpx

from ..settings import DownloadConfiguration

LOGGER = logging.getLogger("ExchangeLab.CumulativeUpdate.net")

# --- Constants & globals -------------------------------------------------------

_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None
_CLIENT_FACTORY: Optional[Callable[[], httpx.Client]] = None

# --- Client construction helpers ----------------------------------------------


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def _request_hook(request: httpx.Request) -> None:
    request.headers.setdefault("X-Request-ID", uuid.uuid4().hex[:12])
    meta: MutableMapping[str, object] = request.extensions.setdefault("exlab_meta", {})  # type: ignore[assignment]
    meta["start_time"] = time.perf_counter()


def _response_hook(response: httpx.Response) -> None:
    meta = response.request.extensions.get("exlab_meta", {})
    start = meta.get("start_time") if isinstance(meta, dict) else None
    elapsed = time.perf_counter() - start if isinstance(start, (int, float)) else None
    LOGGER.debug(
        "http-response",
        extra={
            "stage": "fetch",
            "extra_fields": {
                "url": str(response.request.url),
                "status": response.status_code,
                "elapsed_sec": elapsed,
            },
        },
    )


def _timeout_for(config: DownloadConfiguration) -> httpx.Timeout:
    return httpx.Timeout(
        connect=config.connect_timeout_sec,
        read=config.timeout_sec,
        write=config.timeout_sec,
        pool=config.connect_timeout_sec,
    )


def build_http_client(config: Optional[DownloadConfiguration] = None) -> httpx.Client:
    """Construct a client with polite headers, certifi trust, and logging hooks."""

    cfg = config or DownloadConfiguration()
    return httpx.Client(
        headers=dict(cfg.polite_headers),
        timeout=_timeout_for(cfg),
        verify=_build_ssl_context(),
        trust_env=True,
        follow_redirects=True,
        event_hooks={"request": [_request_hook], "response": [_response_hook]},
    )


def _close_client_unlocked() -> None:
    global _HTTP_CLIENT
    if _HTTP_CLIENT is not None:
        with contextlib.suppress(Exception):
            _HTTP_CLIENT.close()
    _HTTP_CLIENT = None


# --- Public API ----------------------------------------------------------------


def configure_http_client(
    client: Optional[httpx.Client] = None,
    *,
    factory: Optional[Callable[[], httpx.Client]] = None,
) -> None:
    """Override the shared HTTPX client or register a factory for tests."""

    if client is not None and factory is not None:
        raise ValueError("provide either a client or factory, not both")

    global _HTTP_CLIENT, _CLIENT_FACTORY
    with _CLIENT_LOCK:
        if client is None or _HTTP_CLIENT is not client:
            _close_client_unlocked()
        _HTTP_CLIENT = client
        _CLIENT_FACTORY = factory


def reset_http_client() -> None:
    """Reset the shared HTTPX client to its default configuration (test helper)."""

    global _CLIENT_FACTORY
    with _CLIENT_LOCK:
        _CLIENT_FACTORY = None
        _close_client_unlocked()


def get_http_client(config: Optional[DownloadConfiguration] = None) -> httpx.Client:
    """Return the shared HTTPX client, creating it if necessary."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is not None:
            return _HTTP_CLIENT
        if _CLIENT_FACTORY is not None:
            candidate = _CLIENT_FACTORY()
            if not isinstance(candidate, httpx.Client):
                raise TypeError("client factory must return an httpx.Client")
            _HTTP_CLIENT = candidate
        else:
            _HTTP_CLIENT = build_http_client(config)
        return _HTTP_CLIENT


__all__ = [
    "build_http_client",
    "configure_http_client",
    "get_http_client",
    "reset_http_client",
]
