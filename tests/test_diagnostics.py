from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from cmdtail.diagnostics.base import DiagnosticsRecord, InMemoryDiagnosticsStore
from cmdtail.diagnostics.file_store import FileDiagnosticsStore


def _record(**overrides: object) -> DiagnosticsRecord:
    values: dict[str, object] = {
        "executable": "make",
        "arguments": ["test", "-j4"],
        "exit_code": 0,
        "was_cancelled": False,
        "timed_out": False,
        "duration_s": 1.234,
        "stdout_bytes_total": 2048,
        "stderr_bytes_total": 12,
        "stdout_bytes_captured": 1024,
        "stderr_bytes_captured": 12,
        "stdout_truncated": True,
        "capture_limit_bytes": 1024,
        "timestamp": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return DiagnosticsRecord(**values)  # type: ignore[arg-type]


def test_report_text_lists_every_field() -> None:
    report = _record().report_text

    assert report.splitlines() == [
        "Time: 2024-05-01T12:00:00+00:00",
        "Status: Success",
        "Command: make test -j4",
        "Duration: 1.23s",
        "Exit code: 0",
        "Timed out: false",
        "Cancelled: false",
        "Capture limit: 1024",
        "Stdout bytes: 1024/2048 captured (truncated)",
        "Stderr bytes: 12/12 captured",
    ]


def test_report_text_for_launch_failure() -> None:
    record = _record(
        exit_code=None,
        launch_error="No such file or directory",
        capture_limit_bytes=None,
        stdout_truncated=False,
    )

    lines = record.report_text.splitlines()

    assert "Status: Launch error: No such file or directory" in lines
    assert "Exit code: n/a" in lines
    assert "Capture limit: unlimited" in lines
    assert lines[-1] == "Launch error: No such file or directory"


def test_status_summary_prefers_timeout_and_cancellation() -> None:
    assert _record(timed_out=True, exit_code=-9).status_summary == "Timed out"
    assert _record(was_cancelled=True, exit_code=-9).status_summary == "Cancelled"
    assert _record(exit_code=2).status_summary == "Exit code 2"
    assert _record(exit_code=None).status_summary == "Unknown"


def test_in_memory_store_keeps_latest_record() -> None:
    store = InMemoryDiagnosticsStore()
    assert store.load_last() is None

    store.record(_record(exit_code=1))
    store.record(_record(exit_code=2))

    latest = store.load_last()
    assert latest is not None
    assert latest.exit_code == 2


def test_file_store_round_trips_last_record(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "last_command.json"
    store = FileDiagnosticsStore(path)
    record = _record(timed_out=True, exit_code=-9)

    store.record(record)

    assert path.exists()
    assert FileDiagnosticsStore(path).load_last() == record
    assert not list(path.parent.glob("*.tmp"))


def test_file_store_overwrites_previous_record(tmp_path: Path) -> None:
    store = FileDiagnosticsStore(tmp_path / "last_command.json")

    store.record(_record(executable="first"))
    store.record(_record(executable="second"))

    latest = store.load_last()
    assert latest is not None
    assert latest.executable == "second"


def test_file_store_missing_file_returns_none(tmp_path: Path) -> None:
    store = FileDiagnosticsStore(tmp_path / "absent.json")

    assert store.load_last() is None


def test_file_store_corrupt_file_returns_none_and_warns(tmp_path: Path, caplog) -> None:
    path = tmp_path / "last_command.json"
    path.write_text("{not json", encoding="utf-8")
    caplog.set_level(logging.WARNING)

    assert FileDiagnosticsStore(path).load_last() is None
    assert "Failed to decode last command diagnostics" in caplog.text


def test_file_store_incomplete_payload_returns_none(tmp_path: Path) -> None:
    path = tmp_path / "last_command.json"
    path.write_text(json.dumps({"executable": "make"}), encoding="utf-8")

    assert FileDiagnosticsStore(path).load_last() is None


def test_file_store_write_failure_is_logged_not_raised(tmp_path: Path, caplog) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = FileDiagnosticsStore(blocker / "last_command.json")
    caplog.set_level(logging.ERROR)

    store.record(_record())

    assert "Failed to persist command diagnostics" in caplog.text
    assert store.load_last() is None


def test_file_store_non_utf8_file_returns_none_and_warns(tmp_path: Path, caplog) -> None:
    path = tmp_path / "last_command.json"
    path.write_bytes(b"\xff\xfe{garbage")
    caplog.set_level(logging.WARNING)

    assert FileDiagnosticsStore(path).load_last() is None
    assert "Failed to decode last command diagnostics" in caplog.text


def test_file_store_rejects_non_boolean_flags(tmp_path: Path) -> None:
    path = tmp_path / "last_command.json"
    payload = _record().to_dict()
    payload["was_cancelled"] = "false"
    path.write_text(json.dumps(payload), encoding="utf-8")

    assert FileDiagnosticsStore(path).load_last() is None


def test_record_from_dict_accepts_missing_optional_flags() -> None:
    payload = _record().to_dict()
    del payload["stdout_truncated"]
    del payload["stderr_truncated"]

    record = DiagnosticsRecord.from_dict(payload)

    assert record.stdout_truncated is False
    assert record.stderr_truncated is False
