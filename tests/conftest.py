# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures and in-memory collaborators for the ExchangeLab suite",
#   "sections": [
#     {"id": "path", "name": "sys.path setup", "anchor": "PATH", "kind": "helpers"},
#     {"id": "fakes", "name": "In-memory collaborators", "anchor": "FAKE", "kind": "helpers"},
#     {"id": "fixtures", "name": "Fixtures", "anchor": "FIX", "kind": "fixtures"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Adds ``src`` to ``sys.path`` so the suite runs from a plain checkout, isolates
every test from ``EXLAB_*`` environment variables and the user's log
directory, and provides in-memory file-system, fetcher, and inventory
collaborators for the distribution workflow.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ExchangeLab.CumulativeUpdate import net  # noqa: E402
from ExchangeLab.CumulativeUpdate.catalog import VersionCatalog  # noqa: E402
from ExchangeLab.CumulativeUpdate.fetch import FetchResult  # noqa: E402
from ExchangeLab.CumulativeUpdate.inventory import ProductVersion  # noqa: E402
from ExchangeLab.errors import FetchFailed  # noqa: E402
from ExchangeLab.logging_utils import LOGGER_NAME  # noqa: E402
from ExchangeLab.settings import invalidate_default_config_cache  # noqa: E402

CU18_URL = "https://download.example.com/exchange/2013/cu18/Exchange2013-x64-cu18.exe"
CU6_URL = "https://download.example.com/exchange/2016/cu6/ExchangeServer2016-x64-cu6.exe"

# --- In-memory collaborators ---------------------------------------------------


class InMemoryFileSystem:
    """FileSystem keeping files as bytes keyed by their string path."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.directories: Set[str] = set()
        self.fail_directories: Set[str] = set()
        self.fail_copies: Set[str] = set()
        self.copies: List[Tuple[str, str]] = []
        self.removed: List[str] = []

    def exists(self, path) -> bool:
        key = str(path)
        return key in self.files or key in self.directories

    def make_directory(self, path) -> None:
        key = str(path)
        if key in self.fail_directories:
            raise PermissionError(f"Access is denied: {key}")
        self.directories.add(key)

    def copy_file(self, source, destination) -> None:
        key = str(destination)
        if key in self.fail_copies:
            raise OSError(f"The network path was not found: {key}")
        self.files[key] = self.files[str(source)]
        self.copies.append((str(source), key))

    def remove_file(self, path) -> None:
        self.files.pop(str(path), None)
        self.removed.append(str(path))


class RecordingFetcher:
    """Fetcher that writes a fixed payload into an :class:`InMemoryFileSystem`."""

    def __init__(self, filesystem: InMemoryFileSystem, payload: bytes = b"MZ-installer") -> None:
        self.filesystem = filesystem
        self.payload = payload
        self.calls: List[Tuple[str, Path]] = []
        self.error: Optional[FetchFailed] = None

    def fetch(self, url: str, destination: Path) -> FetchResult:
        self.calls.append((url, destination))
        if self.error is not None:
            raise self.error
        self.filesystem.files[str(destination)] = self.payload
        return FetchResult(url, destination, len(self.payload), 1, 0.0)


class FakeInventory:
    def __init__(self, versions: Sequence[Tuple[int, int]] = (), servers: Sequence[str] = ()) -> None:
        self.versions = [ProductVersion(major, minor) for major, minor in versions]
        self.servers = list(servers)

    def installed_versions(self):
        return self.versions

    def installed_servers(self):
        return self.servers


# --- Fixtures --------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Strip ``EXLAB_*`` variables, redirect logs, and reset shared state."""

    for name in list(os.environ):
        if name.startswith("EXLAB_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("EXLAB_LOG_DIR", str(tmp_path / "logs"))
    invalidate_default_config_cache()
    net.reset_http_client()
    yield
    net.reset_http_client()
    invalidate_default_config_cache()
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_exlab_managed", False):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def sample_catalog() -> VersionCatalog:
    return VersionCatalog(
        [
            ("2013_CU9", "N/A"),
            ("2013_CU18", CU18_URL),
            ("2016_CU6", CU6_URL),
            ("2016_CU7", "N/A"),
        ]
    )


@pytest.fixture
def memory_fs() -> InMemoryFileSystem:
    return InMemoryFileSystem()


@pytest.fixture
def recording_fetcher(memory_fs: InMemoryFileSystem) -> RecordingFetcher:
    return RecordingFetcher(memory_fs)


@pytest.fixture
def fake_inventory_factory():
    return FakeInventory
