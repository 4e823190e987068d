"""Bounded output capture for a single process stream."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from cmdtail.util.logging import get_logger

_LOGGER = get_logger("cmdtail.execution.buffer")


@dataclass(frozen=True)
class BufferSnapshot:
    """Point-in-time copy of an OutputBuffer.

    Attributes:
        retained: The bytes currently held, oldest first.
        total_bytes: Bytes ever appended, including evicted ones.
        truncated: True if any appended bytes were evicted or dropped.
    """

    retained: bytes
    total_bytes: int
    truncated: bool

    @property
    def captured_bytes(self) -> int:
        """Number of bytes retained."""

        return len(self.retained)

    def render(self) -> str:
        """Render the retained bytes as text with a truncation notice if needed."""

        return render_output(self.retained, truncated=self.truncated, total_bytes=self.total_bytes)


class OutputBuffer:
    """Accumulates stream output, keeping only the most recent bytes.

    With no capture limit every byte is kept. With a limit ``L`` the buffer
    always holds the last ``min(L, total_bytes)`` bytes; older bytes are
    evicted from the front as new chunks arrive. A limit of zero keeps
    nothing but still counts bytes and flags truncation.
    """

    def __init__(self, capture_limit_bytes: int | None = None) -> None:
        """Initialize an empty buffer.

        Args:
            capture_limit_bytes: Maximum bytes to retain, or None for unbounded.
                Negative limits are treated as zero.
        """

        self._limit = None if capture_limit_bytes is None else max(0, capture_limit_bytes)
        self._data = bytearray()
        self._total_bytes = 0
        self._truncated = False
        self._lock = threading.Lock()

    @property
    def capture_limit_bytes(self) -> int | None:
        """The configured retention limit."""

        return self._limit

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    @property
    def truncated(self) -> bool:
        with self._lock:
            return self._truncated

    @property
    def retained(self) -> bytes:
        with self._lock:
            return bytes(self._data)

    def append(self, chunk: bytes) -> None:
        """Append a chunk of stream output in production order."""

        if not chunk:
            return
        with self._lock:
            self._total_bytes += len(chunk)
            limit = self._limit
            if limit is None:
                self._data.extend(chunk)
            elif limit == 0:
                pass
            elif len(chunk) >= limit:
                self._data = bytearray(chunk[-limit:])
            else:
                overflow = len(self._data) + len(chunk) - limit
                if overflow > 0:
                    del self._data[:overflow]
                self._data.extend(chunk)
            if self._total_bytes > len(self._data):
                self._truncated = True

    def snapshot(self) -> BufferSnapshot:
        """Return a consistent copy of the buffer state."""

        with self._lock:
            return BufferSnapshot(
                retained=bytes(self._data),
                total_bytes=self._total_bytes,
                truncated=self._truncated,
            )


def decode_output(data: bytes) -> str:
    """Decode stream bytes as UTF-8, replacing invalid sequences instead of failing."""

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        _LOGGER.debug("Output is not valid UTF-8 (%s); decoding lossily.", exc.reason)
        return data.decode("utf-8", errors="replace")


def render_output(data: bytes, *, truncated: bool, total_bytes: int) -> str:
    """Render captured output, adding a truncation header when needed."""

    output = decode_output(data)
    if not truncated:
        return output
    return f"[output truncated: showing last {len(data)} of {total_bytes} bytes]\n{output}"
