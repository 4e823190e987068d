"""Local execution engine implementation."""

from __future__ import annotations

import asyncio
import time

from cmdtail.diagnostics.base import (
    DiagnosticsRecord,
    DiagnosticsStore,
    InMemoryDiagnosticsStore,
)
from cmdtail.execution.base import (
    CommandExecutor,
    CommandLaunchError,
    CommandResult,
    CommandSpec,
)
from cmdtail.execution.invocation import (
    DEFAULT_DRAIN_TIMEOUT_S,
    DEFAULT_KILL_TIMEOUT_S,
    ProcessInvocation,
)
from cmdtail.util.logging import get_logger
from cmdtail.util.observability import ObservabilityManager, create_observability_manager


class LocalExecutor(CommandExecutor):
    """Execute commands on the local host with bounded output capture."""

    def __init__(
        self,
        diagnostics: DiagnosticsStore | None = None,
        observability: ObservabilityManager | None = None,
        *,
        drain_timeout_s: float = DEFAULT_DRAIN_TIMEOUT_S,
        kill_timeout_s: float = DEFAULT_KILL_TIMEOUT_S,
    ) -> None:
        """Initialize the executor.

        Args:
            diagnostics: Store receiving a record after every invocation.
                Defaults to an in-memory store.
            observability: Event logger and metrics sink.
            drain_timeout_s: Grace period for reading residual output after resolution.
            kill_timeout_s: Grace period for a process to exit after it was killed.
        """

        self._diagnostics = diagnostics if diagnostics is not None else InMemoryDiagnosticsStore()
        self._observability = observability or create_observability_manager()
        self._drain_timeout_s = drain_timeout_s
        self._kill_timeout_s = kill_timeout_s
        self._logger = get_logger(self.__class__.__name__)

    @property
    def diagnostics(self) -> DiagnosticsStore:
        return self._diagnostics

    @property
    def observability(self) -> ObservabilityManager:
        return self._observability

    def load_last_diagnostics(self) -> DiagnosticsRecord | None:
        """Return diagnostics for the most recently finished invocation."""

        return self._diagnostics.load_last()

    async def run(
        self,
        spec: CommandSpec,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> CommandResult:
        """Run a command locally and capture its output.

        Args:
            spec: The command to execute.
            cancel_event: Optional event; setting it kills the process and the
                returned result has ``was_cancelled`` set.

        Returns:
            CommandResult with rendered output, exit code, and flags. Non-zero
            exit codes are returned, not raised.

        Raises:
            CommandLaunchError: If the process could not be started.
            CommandTimeoutError: If the command exceeded ``spec.timeout_s``.
            asyncio.CancelledError: If the awaiting task was cancelled. The process
                is killed first; its partial output is not returned, but the
                diagnostics record and the ``command.finished`` event still
                carry its byte counts.
        """

        started = time.monotonic()
        self._observability.metrics.increment("commands.total")
        self._logger.info("Running command: %s", spec.command)
        try:
            process = await self._launch(spec)
        except CommandLaunchError as exc:
            self._record_launch_failure(spec, exc, time.monotonic() - started)
            raise

        self._observability.log_event(
            "command.started",
            {"command": spec.command, "pid": process.pid, "timeout_s": spec.timeout_s},
        )
        invocation = ProcessInvocation(
            spec,
            process,
            started_at=started,
            drain_timeout_s=self._drain_timeout_s,
            kill_timeout_s=self._kill_timeout_s,
        )
        try:
            result = await invocation.run(cancel_event)
        finally:
            self._record_invocation(spec, invocation)

        self._logger.info(
            "Command finished with exit code %s in %.2fs.",
            result.exit_code,
            result.duration_s,
        )
        return result

    async def _launch(self, spec: CommandSpec) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                spec.executable,
                *spec.arguments,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(spec.cwd) if spec.cwd is not None else None,
                env=spec.merged_environment(),
            )
        except (OSError, ValueError) as exc:
            # ValueError covers NUL bytes in arguments and malformed env names.
            reason = str(exc) or exc.__class__.__name__
            raise CommandLaunchError(spec.executable, reason) from exc

    def _record_launch_failure(
        self,
        spec: CommandSpec,
        error: CommandLaunchError,
        duration_s: float,
    ) -> None:
        self._logger.error("Failed to launch %s: %s", spec.executable, error.reason)
        self._observability.metrics.increment("commands.launch_failed")
        self._observability.log_event(
            "command.launch_failed",
            {"command": spec.command, "error": error.reason},
            level="ERROR",
        )
        self._diagnostics.record(
            DiagnosticsRecord(
                executable=spec.executable,
                arguments=list(spec.arguments),
                exit_code=None,
                was_cancelled=False,
                timed_out=False,
                duration_s=duration_s,
                capture_limit_bytes=spec.capture_limit_bytes,
                launch_error=error.reason,
            )
        )

    def _record_invocation(self, spec: CommandSpec, invocation: ProcessInvocation) -> None:
        state = invocation.state
        stdout = invocation.stdout_snapshot()
        stderr = invocation.stderr_snapshot()
        exit_code = invocation.exit_code
        duration_s = invocation.duration_s

        metrics = self._observability.metrics
        metrics.record_duration("command.duration", duration_s)
        if state.timed_out:
            metrics.increment("commands.timed_out")
        elif state.cancelled:
            metrics.increment("commands.cancelled")
        elif exit_code == 0:
            metrics.increment("commands.succeeded")
        else:
            metrics.increment("commands.failed")

        self._observability.log_event(
            "command.finished",
            {
                "command": spec.command,
                "exit_code": exit_code,
                "timed_out": state.timed_out,
                "cancelled": state.cancelled,
                "duration_s": round(duration_s, 3),
                "stdout_bytes": stdout.total_bytes,
                "stderr_bytes": stderr.total_bytes,
            },
        )
        self._diagnostics.record(
            DiagnosticsRecord(
                executable=spec.executable,
                arguments=list(spec.arguments),
                exit_code=exit_code,
                was_cancelled=state.cancelled,
                timed_out=state.timed_out,
                duration_s=duration_s,
                stdout_bytes_total=stdout.total_bytes,
                stderr_bytes_total=stderr.total_bytes,
                stdout_bytes_captured=stdout.captured_bytes,
                stderr_bytes_captured=stderr.captured_bytes,
                stdout_truncated=stdout.truncated,
                stderr_truncated=stderr.truncated,
                capture_limit_bytes=spec.capture_limit_bytes,
            )
        )
