"""Diagnostics records for post-mortem inspection of the last command."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class DiagnosticsRecord:
    """Snapshot of the most recent command invocation.

    Attributes:
        executable: Program that was run.
        arguments: Arguments passed to the program.
        exit_code: Exit code from the process, or None if it never launched.
        was_cancelled: Whether the invocation was cancelled.
        timed_out: Whether the invocation timed out.
        duration_s: Total duration in seconds.
        stdout_bytes_total: Bytes produced on stdout.
        stderr_bytes_total: Bytes produced on stderr.
        stdout_bytes_captured: Stdout bytes retained in memory.
        stderr_bytes_captured: Stderr bytes retained in memory.
        stdout_truncated: Whether stdout exceeded the capture limit.
        stderr_truncated: Whether stderr exceeded the capture limit.
        capture_limit_bytes: Per-stream capture limit, None if unbounded.
        launch_error: OS error text when the process failed to launch.
        timestamp: When the record was taken (UTC).
    """

    executable: str
    arguments: list[str]
    exit_code: int | None
    was_cancelled: bool
    timed_out: bool
    duration_s: float
    stdout_bytes_total: int = 0
    stderr_bytes_total: int = 0
    stdout_bytes_captured: int = 0
    stderr_bytes_captured: int = 0
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    capture_limit_bytes: int | None = None
    launch_error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def command_line(self) -> str:
        """Human-readable command line."""

        return " ".join([self.executable, *self.arguments])

    @property
    def status_summary(self) -> str:
        """One-line status: timeout and cancellation take precedence over exit codes."""

        if self.timed_out:
            return "Timed out"
        if self.was_cancelled:
            return "Cancelled"
        if self.launch_error is not None:
            return f"Launch error: {self.launch_error}"
        if self.exit_code is not None:
            return "Success" if self.exit_code == 0 else f"Exit code {self.exit_code}"
        return "Unknown"

    @property
    def report_text(self) -> str:
        """Plain-text report suitable for pasting into a bug report."""

        limit = "unlimited" if self.capture_limit_bytes is None else str(self.capture_limit_bytes)
        lines = [
            f"Time: {self.timestamp.isoformat()}",
            f"Status: {self.status_summary}",
            f"Command: {self.command_line}",
            f"Duration: {self.duration_s:.2f}s",
            f"Exit code: {'n/a' if self.exit_code is None else self.exit_code}",
            f"Timed out: {str(self.timed_out).lower()}",
            f"Cancelled: {str(self.was_cancelled).lower()}",
            f"Capture limit: {limit}",
            _bytes_line("Stdout", self.stdout_bytes_captured, self.stdout_bytes_total, self.stdout_truncated),
            _bytes_line("Stderr", self.stderr_bytes_captured, self.stderr_bytes_total, self.stderr_truncated),
        ]
        if self.launch_error is not None:
            lines.append(f"Launch error: {self.launch_error}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the record into a JSON-compatible dictionary."""

        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> DiagnosticsRecord:
        """Parse a record produced by ``to_dict``.

        Raises:
            TypeError: If the payload is not a mapping or a field has the wrong type.
            KeyError: If a required field is missing.
            ValueError: If the timestamp is malformed.
        """

        if not isinstance(data, dict):
            raise TypeError("Diagnostics payload must be a mapping.")
        arguments = data["arguments"]
        if not isinstance(arguments, list):
            raise TypeError("Diagnostics arguments must be a list.")
        timestamp = datetime.fromisoformat(str(data["timestamp"]))
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            executable=str(data["executable"]),
            arguments=[str(arg) for arg in arguments],
            exit_code=_optional_int(data.get("exit_code")),
            was_cancelled=_require_bool(data, "was_cancelled"),
            timed_out=_require_bool(data, "timed_out"),
            duration_s=float(data["duration_s"]),
            stdout_bytes_total=int(data.get("stdout_bytes_total", 0)),
            stderr_bytes_total=int(data.get("stderr_bytes_total", 0)),
            stdout_bytes_captured=int(data.get("stdout_bytes_captured", 0)),
            stderr_bytes_captured=int(data.get("stderr_bytes_captured", 0)),
            stdout_truncated=_require_bool(data, "stdout_truncated", False),
            stderr_truncated=_require_bool(data, "stderr_truncated", False),
            capture_limit_bytes=_optional_int(data.get("capture_limit_bytes")),
            launch_error=_optional_str(data.get("launch_error")),
            timestamp=timestamp,
        )


class DiagnosticsStore(ABC):
    """Keeps the diagnostics record of the most recent invocation."""

    @abstractmethod
    def record(self, record: DiagnosticsRecord) -> None:
        """Store a record, replacing any previous one. Must not raise."""

    @abstractmethod
    def load_last(self) -> DiagnosticsRecord | None:
        """Return the latest record, or None if none is available."""


class InMemoryDiagnosticsStore(DiagnosticsStore):
    """Process-local diagnostics store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last: DiagnosticsRecord | None = None

    def record(self, record: DiagnosticsRecord) -> None:
        with self._lock:
            self._last = record

    def load_last(self) -> DiagnosticsRecord | None:
        with self._lock:
            return self._last


def _bytes_line(label: str, captured: int, total: int, truncated: bool) -> str:
    suffix = " (truncated)" if truncated else ""
    return f"{label} bytes: {captured}/{total} captured{suffix}"


def _require_bool(data: dict[str, Any], key: str, default: bool | None = None) -> bool:
    value = data[key] if default is None else data.get(key, default)
    if not isinstance(value, bool):
        raise TypeError(f"Diagnostics field '{key}' must be a boolean.")
    return value


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
