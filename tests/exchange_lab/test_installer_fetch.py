# === NAVMAP v1 ===
# {
#   "module": "tests.exchange_lab.test_installer_fetch",
#   "purpose": "Validates streamed installer downloads, retry policy, and the shared HTTPX client helpers.",
#   "sections": [
#     {"id": "helpers", "name": "Helpers", "anchor": "HLP", "kind": "helpers"},
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Validates streamed installer downloads, retry policy, and the shared HTTPX client helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List

import httpx
import pytest

from ExchangeLab.CumulativeUpdate import net
from ExchangeLab.CumulativeUpdate.fetch import HttpFetcher, is_retryable_error, retry_with_backoff
from ExchangeLab.errors import FetchFailed
from ExchangeLab.settings import DownloadConfiguration

URL = "https://download.example.com/exchange/2013/cu18/Exchange2013-x64-cu18.exe"


def _fetcher(handler: Callable[[httpx.Request], httpx.Response], sleeps: List[float], **config) -> HttpFetcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpFetcher(DownloadConfiguration(**config), client=client, sleep=sleeps.append)


def test_fetch_streams_body_into_destination(tmp_path: Path):
    payload = b"MZ" + b"\x00" * 4096
    fetcher = _fetcher(lambda request: httpx.Response(200, content=payload), [], chunk_size_bytes=512)
    destination = tmp_path / "cache" / "Exchange2013-x64-cu18.exe"

    result = fetcher.fetch(URL, destination)

    assert destination.read_bytes() == payload
    assert result.bytes_written == len(payload)
    assert result.attempts == 1
    assert not destination.with_name(destination.name + ".part").exists()


def test_fetch_retries_transient_status(tmp_path: Path):
    responses = iter([httpx.Response(503), httpx.Response(429), httpx.Response(200, content=b"ok")])
    sleeps: List[float] = []
    fetcher = _fetcher(lambda request: next(responses), sleeps, max_retries=3, backoff_factor=0.5)

    result = fetcher.fetch(URL, tmp_path / "installer.exe")

    assert result.attempts == 3
    assert sleeps == [0.5, 1.0]
    assert (tmp_path / "installer.exe").read_bytes() == b"ok"


def test_fetch_does_not_retry_client_errors(tmp_path: Path):
    calls: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404)

    fetcher = _fetcher(handler, [], max_retries=3)
    destination = tmp_path / "installer.exe"

    with pytest.raises(FetchFailed) as excinfo:
        fetcher.fetch(URL, destination)

    assert excinfo.value.status_code == 404
    assert excinfo.value.retryable is False
    assert excinfo.value.url == URL
    assert len(calls) == 1
    assert not destination.exists()
    assert list(tmp_path.iterdir()) == []


def test_fetch_gives_up_after_configured_retries(tmp_path: Path):
    calls: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    fetcher = _fetcher(handler, [], max_retries=2, backoff_factor=0.0)

    with pytest.raises(FetchFailed) as excinfo:
        fetcher.fetch(URL, tmp_path / "installer.exe")

    assert len(calls) == 3
    assert excinfo.value.retryable is True


def test_fetch_wraps_transport_errors(tmp_path: Path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = _fetcher(handler, [], max_retries=1, backoff_factor=0.0)

    with pytest.raises(FetchFailed, match="connection refused") as excinfo:
        fetcher.fetch(URL, tmp_path / "installer.exe")

    assert excinfo.value.status_code is None


def test_truncated_body_leaves_no_partial_file(tmp_path: Path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Length": "100"}, content=b"x" * 10)

    fetcher = _fetcher(handler, [], max_retries=0)
    destination = tmp_path / "installer.exe"

    with pytest.raises(FetchFailed, match="received 10 of 100 bytes"):
        fetcher.fetch(URL, destination)

    assert list(tmp_path.iterdir()) == []


def test_fetch_follows_redirects(tmp_path: Path):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "go.example.com":
            return httpx.Response(302, headers={"Location": URL})
        return httpx.Response(200, content=b"redirected")

    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
    fetcher = HttpFetcher(client=client)

    fetcher.fetch("https://go.example.com/fwlink", tmp_path / "installer.exe")

    assert (tmp_path / "installer.exe").read_bytes() == b"redirected"


def test_retry_with_backoff_reports_each_retry():
    attempts = {"count": 0}
    seen = []

    def flaky() -> str:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise httpx.ReadTimeout("slow")
        return "done"

    result = retry_with_backoff(
        flaky,
        retryable=is_retryable_error,
        max_attempts=3,
        backoff_base=0.25,
        callback=lambda attempt, exc, delay: seen.append((attempt, delay)),
        sleep=lambda _: None,
    )

    assert result == "done"
    assert seen == [(1, 0.25), (2, 0.5)]


def test_retry_with_backoff_rejects_zero_attempts():
    with pytest.raises(ValueError):
        retry_with_backoff(lambda: None, retryable=is_retryable_error, max_attempts=0)


def test_shared_client_singleton_and_override():
    first = net.get_http_client()
    assert net.get_http_client() is first
    assert first.headers["User-Agent"] == "ExchangeLab-CUDistributor/1.0"

    replacement = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
    net.configure_http_client(replacement)
    assert net.get_http_client() is replacement

    net.reset_http_client()
    assert net.get_http_client() is not replacement


def test_client_factory_is_used_after_reset():
    built = []

    def factory() -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        built.append(client)
        return client

    net.configure_http_client(factory=factory)
    assert net.get_http_client() is built[0]
    with pytest.raises(ValueError):
        net.configure_http_client(built[0], factory=factory)


def test_request_hook_tags_requests():
    request = httpx.Request("GET", URL)
    net._request_hook(request)
    assert len(request.headers["X-Request-ID"]) == 12
    assert "start_time" in request.extensions["exlab_meta"]
