# === NAVMAP v1 ===
# {
#   "module": "tests.exchange_lab.test_structured_logs",
#   "purpose": "Checks JSON log formatting, secret masking, handler setup, and log retention.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Checks JSON log formatting, secret masking, handler setup, and log retention."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path

from ExchangeLab.logging_utils import (
    JSONFormatter,
    default_log_dir,
    generate_correlation_id,
    mask_sensitive_data,
    setup_logging,
)
from ExchangeLab.settings import LoggingConfiguration


def test_mask_sensitive_data_masks_keys_and_signed_urls():
    masked = mask_sensitive_data(
        {
            "password": "hunter2",
            "url": "https://example.com/cu.exe?sv=2020&sig=abcdef",
            "status": "ok",
        }
    )
    assert masked["password"] == "***masked***"
    assert masked["url"] == "https://example.com/cu.exe?sv=2020&sig=***masked***"
    assert masked["status"] == "ok"


def test_correlation_ids_are_short_and_unique():
    first, second = generate_correlation_id(), generate_correlation_id()
    assert len(first) == 12
    assert first != second


def test_json_formatter_includes_context_fields():
    record = logging.LogRecord("ExchangeLab.test", logging.INFO, __file__, 1, "installer copied", None, None)
    record.correlation_id = "abc123"
    record.stage = "distribute"
    record.target = "ServerA"
    record.extra_fields = {"path": "\\\\ServerA\\C$\\Source\\cu.exe", "token": "secret"}

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "installer copied"
    assert payload["level"] == "INFO"
    assert payload["correlation_id"] == "abc123"
    assert payload["stage"] == "distribute"
    assert payload["target"] == "ServerA"
    assert payload["path"].endswith("cu.exe")
    assert payload["token"] == "***masked***"
    assert payload["timestamp"].endswith("Z")


def test_setup_logging_writes_jsonl(tmp_path: Path):
    logger = setup_logging(LoggingConfiguration(level="DEBUG"), log_dir=tmp_path)
    logging.getLogger("ExchangeLab.CumulativeUpdate.distribution").info(
        "distribution finished", extra={"stage": "summary", "extra_fields": {"failed": []}}
    )
    for handler in logger.handlers:
        handler.flush()

    files = list(tmp_path.glob("exlab-*.jsonl"))
    assert len(files) == 1
    lines = [json.loads(line) for line in files[0].read_text(encoding="utf-8").splitlines()]
    assert lines[-1]["message"] == "distribution finished"
    assert lines[-1]["failed"] == []
    assert logger.level == logging.DEBUG


def test_setup_logging_replaces_its_own_handlers(tmp_path: Path):
    setup_logging(LoggingConfiguration(), log_dir=tmp_path)
    logger = setup_logging(LoggingConfiguration(), log_dir=tmp_path)
    managed = [h for h in logger.handlers if getattr(h, "_exlab_managed", False)]
    assert len(managed) == 2


def test_old_logs_are_compressed_and_expired(tmp_path: Path):
    stale = tmp_path / "exlab-20200101.jsonl"
    stale.write_text("{}\n", encoding="utf-8")
    expired = tmp_path / "exlab-20190101.jsonl.gz"
    expired.write_bytes(b"")
    old = time.time() - 90 * 86400
    os.utime(stale, (old, old))
    os.utime(expired, (old, old))

    setup_logging(LoggingConfiguration(retention_days=30), log_dir=tmp_path)

    assert not stale.exists()
    assert (tmp_path / "exlab-20200101.jsonl.gz").exists()
    assert not expired.exists()


def test_default_log_dir_honours_environment(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("EXLAB_LOG_DIR", str(tmp_path / "custom"))
    assert default_log_dir() == tmp_path / "custom"
