"""Execution engine base types and interfaces."""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Sequence


class CommandExecutionError(RuntimeError):
    """Base class for errors raised by command executors."""


class CommandLaunchError(CommandExecutionError):
    """Raised when the operating system could not start the process."""

    def __init__(self, executable: str, reason: str) -> None:
        super().__init__(f"Failed to launch {executable}: {reason}")
        self.executable = executable
        self.reason = reason


class CommandTimeoutError(CommandExecutionError):
    """Raised when a command exceeded its timeout and was killed.

    Attributes:
        timeout_s: The timeout that elapsed.
        result: Output captured before the process was killed.
    """

    def __init__(self, timeout_s: float, result: CommandResult) -> None:
        super().__init__(f"Command timed out after {timeout_s:g}s: {' '.join(result.command)}")
        self.timeout_s = timeout_s
        self.result = result


@dataclass(frozen=True)
class CommandSpec:
    """Immutable description of a single command invocation.

    Attributes:
        executable: Path or name of the program to run.
        arguments: Ordered arguments passed to the program.
        env: Environment overrides merged over the current environment.
        timeout_s: Optional timeout in seconds.
        capture_limit_bytes: Optional per-stream cap on retained output bytes.
        cwd: Optional working directory.
    """

    executable: str
    arguments: Sequence[str] = ()
    env: Mapping[str, str] | None = None
    timeout_s: float | None = None
    capture_limit_bytes: int | None = None
    cwd: Path | None = None

    def __post_init__(self) -> None:
        """Validate fields and freeze mutable inputs."""

        if not str(self.executable).strip():
            raise ValueError("Executable must be a non-empty path.")
        if self.timeout_s is not None and self.timeout_s < 0:
            raise ValueError("Timeout must not be negative.")
        object.__setattr__(self, "executable", str(self.executable))
        object.__setattr__(self, "arguments", tuple(str(arg) for arg in self.arguments))
        if self.env is not None:
            frozen_env = {str(key): str(value) for key, value in self.env.items()}
            object.__setattr__(self, "env", MappingProxyType(frozen_env))
        if self.capture_limit_bytes is not None:
            object.__setattr__(self, "capture_limit_bytes", max(0, int(self.capture_limit_bytes)))
        if self.cwd is not None:
            object.__setattr__(self, "cwd", Path(self.cwd))

    @property
    def command(self) -> list[str]:
        """Return the full command line as a list."""

        return [self.executable, *self.arguments]

    def merged_environment(self) -> dict[str, str]:
        """Return the current environment with this spec's overrides applied."""

        merged_env = os.environ.copy()
        if self.env:
            merged_env.update(self.env)
        return merged_env


@dataclass(frozen=True)
class CommandResult:
    """Result of running a command to completion or cancellation.

    Attributes:
        executable: The program that was run.
        arguments: Arguments passed to the program.
        stdout: Rendered standard output, prefixed with a notice when truncated.
        stderr: Rendered standard error, prefixed with a notice when truncated.
        exit_code: Exit code returned by the process, or -1 when none was reported.
            Processes killed by a signal report the negated signal number.
        was_cancelled: Whether the caller cancelled the invocation.
        timed_out: Whether the invocation hit its timeout.
        stdout_truncated: Whether stdout exceeded the capture limit.
        stderr_truncated: Whether stderr exceeded the capture limit.
        stdout_bytes_total: Bytes written to stdout, retained or not.
        stderr_bytes_total: Bytes written to stderr, retained or not.
        duration_s: Wall-clock duration since launch in seconds.
    """

    executable: str
    arguments: list[str]
    stdout: str
    stderr: str
    exit_code: int
    was_cancelled: bool
    timed_out: bool
    stdout_truncated: bool
    stderr_truncated: bool
    stdout_bytes_total: int
    stderr_bytes_total: int
    duration_s: float

    @property
    def command(self) -> list[str]:
        """Return the full command line as a list."""

        return [self.executable, *self.arguments]

    @property
    def is_success(self) -> bool:
        """True if the process exited with 0 and was neither cancelled nor timed out."""

        return self.exit_code == 0 and not self.was_cancelled and not self.timed_out


class CommandExecutor(ABC):
    """Abstract base class for command execution engines."""

    @abstractmethod
    async def run(
        self,
        spec: CommandSpec,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> CommandResult:
        """Run a command and capture its results.

        Args:
            spec: The command to execute.
            cancel_event: Optional event; setting it cancels the invocation.

        Returns:
            CommandResult with rendered output, exit code, and flags.

        Raises:
            CommandLaunchError: If the process could not be started.
            CommandTimeoutError: If the command exceeded its timeout.
        """

    async def run_command(
        self,
        executable: str | Path,
        arguments: Sequence[str] | None = None,
        *,
        env: Mapping[str, str] | None = None,
        timeout_s: float | None = None,
        capture_limit_bytes: int | None = None,
        cwd: Path | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CommandResult:
        """Build a CommandSpec from keyword options and run it."""

        spec = CommandSpec(
            executable=str(executable),
            arguments=tuple(arguments or ()),
            env=env,
            timeout_s=timeout_s,
            capture_limit_bytes=capture_limit_bytes,
            cwd=cwd,
        )
        return await self.run(spec, cancel_event=cancel_event)
