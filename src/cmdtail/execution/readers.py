"""Background readers that pump process output into bounded buffers."""

from __future__ import annotations

import asyncio
import contextlib

from cmdtail.execution.buffer import OutputBuffer
from cmdtail.util.logging import get_logger

DEFAULT_CHUNK_SIZE = 64 * 1024


class OutputReader:
    """Continuously reads one stream into an OutputBuffer until EOF.

    Reading runs in its own task so the child never blocks on a full pipe
    while the invocation waits for an outcome.
    """

    def __init__(
        self,
        name: str,
        stream: asyncio.StreamReader,
        buffer: OutputBuffer,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize the reader.

        Args:
            name: Stream label used in logs and task names ("stdout", "stderr").
            stream: Stream to read from.
            buffer: Buffer receiving the chunks.
            chunk_size: Maximum bytes requested per read.
        """

        self._name = name
        self._stream = stream
        self._buffer = buffer
        self._chunk_size = chunk_size
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self._logger = get_logger(self.__class__.__name__)

    @property
    def name(self) -> str:
        return self._name

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def finished(self) -> bool:
        """True once the stream reached EOF or the reader was torn down."""

        return self._task is not None and self._task.done()

    def start(self) -> None:
        """Start pumping the stream in a background task."""

        if self._task is not None:
            raise RuntimeError(f"{self._name} reader already started")
        self._task = asyncio.create_task(self._pump(), name=f"cmdtail-{self._name}-reader")

    async def stop(self, grace_s: float) -> bool:
        """Drain remaining output for up to ``grace_s`` seconds, then stop reading.

        Returns:
            True on the first call, False if the reader was already stopped.
        """

        if self._stopped:
            return False
        self._stopped = True
        task = self._task
        if task is None:
            return True
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace_s)
        except asyncio.TimeoutError:
            self._logger.debug("%s still open after %.2fs; abandoning drain.", self._name, grace_s)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        return True

    def cancel(self) -> None:
        """Stop reading immediately without draining."""

        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _pump(self) -> None:
        while True:
            try:
                chunk = await self._stream.read(self._chunk_size)
            except (ConnectionResetError, BrokenPipeError) as exc:
                self._logger.warning("Reading %s failed: %s", self._name, exc)
                return
            if not chunk:
                return
            self._buffer.append(chunk)
