# === NAVMAP v1 ===
# {
#   "module": "tests.exchange_lab.test_remote_filesystem",
#   "purpose": "Checks remote path construction and the local file-system adapter.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Checks remote path construction and the local file-system adapter."""

from __future__ import annotations

from pathlib import Path

import pytest

from ExchangeLab.CumulativeUpdate.distribution import DistributionRequest, DistributionWorkflow, TargetStatus
from ExchangeLab.CumulativeUpdate.filesystem import FileSystem, LocalFileSystem, build_remote_location
from ExchangeLab.settings import DistributionConfiguration


def test_unc_location_for_default_directory():
    location = build_remote_location(
        "ServerA", "C$\\Source", "Exchange2013-x64-cu18.exe", root_template="\\\\{host}"
    )
    assert location.directory_path == "\\\\ServerA\\C$\\Source"
    assert location.file_path == "\\\\ServerA\\C$\\Source\\Exchange2013-x64-cu18.exe"


def test_unc_location_normalises_separators():
    location = build_remote_location("EX01", "/D$/Installers/", "cu.exe", root_template="\\\\{host}\\")
    assert location.file_path == "\\\\EX01\\D$\\Installers\\cu.exe"


def test_posix_template_builds_posix_paths(tmp_path: Path):
    location = build_remote_location("EX01", "C$\\Source", "cu.exe", root_template=f"{tmp_path}/{{host}}")
    assert location.file_path == f"{tmp_path}/EX01/C$/Source/cu.exe"


@pytest.mark.parametrize("identifier", ["", "   ", "a\\b", "a/b"])
def test_invalid_identifiers(identifier):
    with pytest.raises(ValueError):
        build_remote_location(identifier, "C$\\Source", "cu.exe", root_template="\\\\{host}")


def test_local_filesystem_round_trip(tmp_path: Path):
    fs = LocalFileSystem()
    assert isinstance(fs, FileSystem)
    source = tmp_path / "source.exe"
    source.write_bytes(b"payload")
    target_dir = tmp_path / "share" / "nested"

    fs.make_directory(target_dir)
    fs.copy_file(source, target_dir / "copy.exe")

    assert fs.exists(target_dir / "copy.exe")
    assert (target_dir / "copy.exe").read_bytes() == b"payload"
    assert sorted(p.name for p in target_dir.iterdir()) == ["copy.exe"]

    fs.remove_file(target_dir / "copy.exe")
    fs.remove_file(target_dir / "copy.exe")
    assert not fs.exists(target_dir / "copy.exe")


def test_failed_copy_leaves_no_destination(tmp_path: Path):
    fs = LocalFileSystem()
    with pytest.raises(OSError):
        fs.copy_file(tmp_path / "missing.exe", tmp_path / "copy.exe")
    assert list(tmp_path.iterdir()) == []


def test_workflow_against_real_directories(tmp_path: Path, sample_catalog, recording_fetcher):
    cache = tmp_path / "cache"
    cache.mkdir()
    (cache / "Exchange2013-x64-cu18.exe").write_bytes(b"cached installer")
    blocker = tmp_path / "shares" / "Blocked"
    blocker.parent.mkdir()
    blocker.write_text("not a directory")

    workflow = DistributionWorkflow(
        sample_catalog,
        config=DistributionConfiguration(
            temp_directory=cache,
            destination_directory="C$/Source",
            remote_root_template=f"{tmp_path}/shares/{{host}}",
        ),
        fetcher=recording_fetcher,
        filesystem=LocalFileSystem(),
    )

    report = workflow.run(DistributionRequest(version_key="2013_CU18", targets=["ServerA", "Blocked"]))

    assert recording_fetcher.calls == []
    assert report.outcomes["ServerA"].status is TargetStatus.COPIED
    assert report.outcomes["Blocked"].status is TargetStatus.DIRECTORY_CREATE_FAILED
    copied = tmp_path / "shares" / "ServerA" / "C$" / "Source" / "Exchange2013-x64-cu18.exe"
    assert copied.read_bytes() == b"cached installer"
