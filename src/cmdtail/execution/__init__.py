"""Execution engine package."""

from cmdtail.execution.base import (
    CommandExecutionError,
    CommandExecutor,
    CommandLaunchError,
    CommandResult,
    CommandSpec,
    CommandTimeoutError,
)
from cmdtail.execution.buffer import OutputBuffer
from cmdtail.execution.local_exec import LocalExecutor

__all__ = [
    "CommandExecutionError",
    "CommandExecutor",
    "CommandLaunchError",
    "CommandResult",
    "CommandSpec",
    "CommandTimeoutError",
    "LocalExecutor",
    "OutputBuffer",
]
