"""
Installer Download

Blocking, single-resource download of a Cumulative Update installer into the
local cache. Bytes are streamed into ``<name>.part`` and atomically renamed
into place once the transfer completes, so the cache path only ever holds a
finished file written by this module. Transient failures are retried with
exponential backoff; anything that still fails surfaces as
:class:`~ExchangeLab.errors.FetchFailed`.
"""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, TypeVar, runtime_checkable

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from ..errors import FetchFailed
from ..settings import DownloadConfiguration
from .net import get_http_client

__all__ = [
    "FetchResult",
    "Fetcher",
    "HttpFetcher",
    "IncompleteTransfer",
    "is_retryable_error",
    "retry_with_backoff",
]

LOGGER = logging.getLogger("ExchangeLab.CumulativeUpdate.fetch")

T = TypeVar("T")

_RETRYABLE_HTTP_STATUSES = {408, 425, 429}


@dataclass(slots=True)
class FetchResult:
    """Result metadata for a completed transfer.

    Attributes:
        url: Locator the artifact was fetched from.
        path: Final file path of the artifact.
        bytes_written: Size of the artifact in bytes.
        attempts: Number of attempts the transfer needed.
        elapsed_sec: Wall-clock duration across all attempts.
    """

    url: str
    path: Path
    bytes_written: int
    attempts: int
    elapsed_sec: float


@runtime_checkable
class Fetcher(Protocol):
    """Resource-fetch collaborator: transfer ``url`` to ``destination`` or raise ``FetchFailed``."""

    def fetch(self, url: str, destination: Path) -> FetchResult:
        ...


class IncompleteTransfer(httpx.TransportError):
    """Raised when the body ended before the announced ``Content-Length``."""


def is_retryable_error(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` represents a retryable network failure."""

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status in _RETRYABLE_HTTP_STATUSES
    return isinstance(exc, httpx.TransportError)


def retry_with_backoff(
    func: Callable[[], T],
    *,
    retryable: Callable[[BaseException], bool],
    max_attempts: int = 3,
    backoff_base: float = 0.5,
    jitter: float = 0.0,
    callback: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute ``func`` with exponential backoff until it succeeds."""

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    class _BackoffWait(wait_base):
        def __call__(self, retry_state) -> float:  # type: ignore[override]
            attempt_number = max(retry_state.attempt_number, 1)
            delay = backoff_base * (2 ** (attempt_number - 1))
            if jitter > 0:
                delay += random.uniform(0.0, jitter)
            return max(delay, 0.0)

    def _before_sleep(retry_state) -> None:
        if callback is None or retry_state.outcome is None or not retry_state.outcome.failed:
            return
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        callback(retry_state.attempt_number, retry_state.outcome.exception(), delay)

    controller = Retrying(
        retry=retry_if_exception(retryable),
        wait=_BackoffWait(),
        stop=stop_after_attempt(max_attempts),
        sleep=sleep,
        reraise=True,
        before_sleep=_before_sleep,
    )
    return controller(func)


class HttpFetcher:
    """Download installers over HTTP(S) with the shared HTTPX client."""

    def __init__(
        self,
        config: Optional[DownloadConfiguration] = None,
        *,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or DownloadConfiguration()
        self._client = client
        self._sleep = sleep

    def _download_once(self, url: str, destination: Path) -> int:
        client = self._client or get_http_client(self._config)
        part_path = destination.with_name(destination.name + ".part")
        destination.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        try:
            with client.stream("GET", url) as response:
                response.raise_for_status()
                expected = response.headers.get("Content-Length")
                with part_path.open("wb") as stream:
                    for chunk in response.iter_bytes(self._config.chunk_size_bytes):
                        if chunk:
                            stream.write(chunk)
                            written += len(chunk)
                if expected is not None and expected.isdigit() and int(expected) != written:
                    raise IncompleteTransfer(
                        f"received {written} of {expected} bytes from {url}"
                    )
            os.replace(part_path, destination)
        except Exception:
            part_path.unlink(missing_ok=True)
            raise
        return written

    def _log_retry(self, attempt: int, exc: BaseException, delay: float) -> None:
        LOGGER.warning(
            "download attempt failed, retrying",
            extra={
                "stage": "fetch",
                "extra_fields": {"attempt": attempt, "error": str(exc), "delay_sec": round(delay, 2)},
            },
        )

    def fetch(self, url: str, destination: Path) -> FetchResult:
        """Transfer ``url`` to ``destination``.

        Raises:
            FetchFailed: When the transfer cannot be completed after retries.
        """

        attempts = 0
        started = time.perf_counter()

        def _attempt() -> int:
            nonlocal attempts
            attempts += 1
            return self._download_once(url, destination)

        try:
            written = retry_with_backoff(
                _attempt,
                retryable=is_retryable_error,
                max_attempts=self._config.max_retries + 1,
                backoff_base=self._config.backoff_factor,
                callback=self._log_retry,
                sleep=self._sleep,
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise FetchFailed(
                f"Download of {url} failed with HTTP {status}",
                url=url,
                status_code=status,
                retryable=is_retryable_error(exc),
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchFailed(
                f"Download of {url} failed: {exc}", url=url, retryable=is_retryable_error(exc)
            ) from exc
        except OSError as exc:
            raise FetchFailed(f"Failed to write {destination}: {exc}", url=url) from exc

        return FetchResult(
            url=url,
            path=destination,
            bytes_written=written,
            attempts=attempts,
            elapsed_sec=time.perf_counter() - started,
        )
