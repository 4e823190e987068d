"""Lifecycle of one running process: output capture and the outcome race.

Three paths compete to resolve an invocation: the process exiting on its
own, the timeout elapsing, and the caller cancelling. Each path calls
``ResolutionGate.try_claim``; only the winner kills the process (for timeout
and cancellation) and resolves the outcome future. The result is then
assembled exactly once by the awaiting coroutine.
"""

from __future__ import annotations

import asyncio
import time

from cmdtail.execution.base import CommandResult, CommandSpec, CommandTimeoutError
from cmdtail.execution.buffer import BufferSnapshot, OutputBuffer
from cmdtail.execution.gate import ExecutionState, Outcome, ResolutionGate
from cmdtail.execution.readers import OutputReader
from cmdtail.util.logging import get_logger

DEFAULT_DRAIN_TIMEOUT_S = 1.0
DEFAULT_KILL_TIMEOUT_S = 5.0
EXIT_POLL_INTERVAL_S = 0.02
UNKNOWN_EXIT_CODE = -1


class ProcessInvocation:
    """Owns the buffers, readers, and watchers of a single launched process."""

    def __init__(
        self,
        spec: CommandSpec,
        process: asyncio.subprocess.Process,
        *,
        started_at: float | None = None,
        drain_timeout_s: float = DEFAULT_DRAIN_TIMEOUT_S,
        kill_timeout_s: float = DEFAULT_KILL_TIMEOUT_S,
    ) -> None:
        """Initialize the invocation.

        Args:
            spec: The command being run.
            process: The launched process with piped stdout and stderr.
            started_at: ``time.monotonic()`` value taken before launch.
            drain_timeout_s: How long to wait for readers to reach EOF once resolved.
            kill_timeout_s: How long to wait for the process to exit before
                reporting an unknown exit code.
        """

        self._spec = spec
        self._process = process
        self._started_at = time.monotonic() if started_at is None else started_at
        self._drain_timeout_s = drain_timeout_s
        self._kill_timeout_s = kill_timeout_s
        self._gate = ResolutionGate()
        self._stdout = OutputBuffer(spec.capture_limit_bytes)
        self._stderr = OutputBuffer(spec.capture_limit_bytes)
        self._readers = (
            OutputReader("stdout", process.stdout, self._stdout),
            OutputReader("stderr", process.stderr, self._stderr),
        )
        self._watchers: list[asyncio.Task[None]] = []
        self._outcome: asyncio.Future[Outcome] | None = None
        self._result: CommandResult | None = None
        self._finished_at: float | None = None
        self._logger = get_logger(self.__class__.__name__)

    @property
    def state(self) -> ExecutionState:
        return self._gate.state

    @property
    def readers(self) -> tuple[OutputReader, ...]:
        return self._readers

    @property
    def result(self) -> CommandResult | None:
        """The assembled result, available once the outcome was assembled."""

        return self._result

    @property
    def exit_code(self) -> int | None:
        if self._result is not None:
            return self._result.exit_code
        return self._process.returncode

    @property
    def duration_s(self) -> float:
        end = self._finished_at if self._finished_at is not None else time.monotonic()
        return end - self._started_at

    def stdout_snapshot(self) -> BufferSnapshot:
        return self._stdout.snapshot()

    def stderr_snapshot(self) -> BufferSnapshot:
        return self._stderr.snapshot()

    async def run(self, cancel_event: asyncio.Event | None = None) -> CommandResult:
        """Capture output until an outcome is claimed and return the result.

        Args:
            cancel_event: Optional event; setting it kills the process and
                yields a result with ``was_cancelled=True``.

        Returns:
            The assembled CommandResult.

        Raises:
            CommandTimeoutError: If the timeout won the race.
            asyncio.CancelledError: If the awaiting task was cancelled. The
                process is killed and a result is still assembled first.
        """

        if self._outcome is not None:
            raise RuntimeError("Invocation already running")
        self._outcome = asyncio.get_running_loop().create_future()
        for reader in self._readers:
            reader.start()
        self._watchers.append(asyncio.create_task(self._watch_exit(), name="cmdtail-exit-watcher"))
        if self._spec.timeout_s is not None:
            self._watchers.append(
                asyncio.create_task(
                    self._watch_timeout(self._spec.timeout_s),
                    name="cmdtail-timeout-watcher",
                )
            )
        if cancel_event is not None:
            self._watchers.append(
                asyncio.create_task(
                    self._watch_cancel_event(cancel_event),
                    name="cmdtail-cancel-listener",
                )
            )

        try:
            try:
                outcome = await self._outcome
            except asyncio.CancelledError:
                self._resolve(Outcome.CANCELLED)
                self._logger.info("Invocation of %s cancelled by caller.", self._spec.executable)
                await self._assemble()
                raise
            result = await self._assemble()
        finally:
            self.close()
        if outcome is Outcome.TIMED_OUT and self._spec.timeout_s is not None:
            raise CommandTimeoutError(self._spec.timeout_s, result)
        return result

    def close(self) -> None:
        """Release watchers, readers, and the process. Safe to call repeatedly."""

        for task in self._watchers:
            if not task.done():
                task.cancel()
        for reader in self._readers:
            reader.cancel()
        self._kill()

    def _resolve(self, outcome: Outcome) -> bool:
        if not self._gate.try_claim(outcome):
            return False
        if outcome is not Outcome.EXITED:
            self._kill()
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(outcome)
        return True

    def _kill(self) -> None:
        if self._process.returncode is not None:
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    async def _wait_for_exit(self) -> None:
        # Process.wait() also waits for every pipe to close, which a grandchild
        # holding stdout can delay forever. The return code is set on exit alone.
        while self._process.returncode is None:
            await asyncio.sleep(EXIT_POLL_INTERVAL_S)

    async def _watch_exit(self) -> None:
        await self._wait_for_exit()
        self._resolve(Outcome.EXITED)

    async def _watch_timeout(self, timeout_s: float) -> None:
        await asyncio.sleep(timeout_s)
        if self._resolve(Outcome.TIMED_OUT):
            self._logger.warning(
                "Command %s exceeded %.2fs timeout; killed.", self._spec.executable, timeout_s
            )

    async def _watch_cancel_event(self, cancel_event: asyncio.Event) -> None:
        await cancel_event.wait()
        if self._resolve(Outcome.CANCELLED):
            self._logger.info("Command %s cancelled; killed.", self._spec.executable)

    async def _await_exit_code(self) -> int:
        if self._process.returncode is None:
            try:
                await asyncio.wait_for(self._wait_for_exit(), timeout=self._kill_timeout_s)
            except asyncio.TimeoutError:
                self._logger.warning(
                    "Process %s did not exit within %.2fs.", self._spec.executable, self._kill_timeout_s
                )
        returncode = self._process.returncode
        return UNKNOWN_EXIT_CODE if returncode is None else returncode

    async def _assemble(self) -> CommandResult:
        exit_code = await self._await_exit_code()
        await asyncio.gather(*(reader.stop(self._drain_timeout_s) for reader in self._readers))
        self._finished_at = time.monotonic()

        stdout = self._stdout.snapshot()
        stderr = self._stderr.snapshot()
        state = self._gate.state
        self._result = CommandResult(
            executable=self._spec.executable,
            arguments=list(self._spec.arguments),
            stdout=stdout.render(),
            stderr=stderr.render(),
            exit_code=exit_code,
            was_cancelled=state.cancelled,
            timed_out=state.timed_out,
            stdout_truncated=stdout.truncated,
            stderr_truncated=stderr.truncated,
            stdout_bytes_total=stdout.total_bytes,
            stderr_bytes_total=stderr.total_bytes,
            duration_s=self._finished_at - self._started_at,
        )
        return self._result
