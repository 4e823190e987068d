"""Application wiring for CLI-friendly command execution."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Mapping, Sequence

from cmdtail.config import AppConfig, config_to_dict, load_config
from cmdtail.diagnostics.base import DiagnosticsRecord, DiagnosticsStore, InMemoryDiagnosticsStore
from cmdtail.diagnostics.file_store import FileDiagnosticsStore
from cmdtail.execution.base import CommandResult, CommandSpec
from cmdtail.execution.local_exec import LocalExecutor
from cmdtail.util.logging import get_logger
from cmdtail.util.observability import ObservabilityManager


class AppConfigError(RuntimeError):
    """Raised when configuration or runtime setup fails."""


_LOGGER = get_logger("cmdtail.app")


def initialize_config(workspace: Path) -> Path:
    """Create a default configuration file in the workspace.

    Args:
        workspace: Directory where the config should be written.

    Returns:
        Path to the generated configuration file.

    Raises:
        AppConfigError: If the config file already exists.
    """

    workspace = workspace.resolve()
    config_path = workspace / "cmdtail.yaml"
    if config_path.exists():
        raise AppConfigError(
            f"Config file already exists at {config_path}. Remove it or choose another "
            "workspace."
        )
    workspace.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config_to_dict(AppConfig()), indent=2), encoding="utf-8")
    _LOGGER.info("Initialized configuration at %s", config_path)
    return config_path


def load_app_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration, wrapping parse failures in AppConfigError."""

    try:
        return load_config(config_path)
    except (OSError, ValueError, RuntimeError) as exc:
        raise AppConfigError(f"Invalid configuration: {exc}") from exc


def build_diagnostics_store(config: AppConfig) -> DiagnosticsStore:
    """Create the diagnostics store described by the configuration."""

    if not config.diagnostics.enabled:
        return InMemoryDiagnosticsStore()
    return FileDiagnosticsStore(config.diagnostics.path)


def build_executor(
    config: AppConfig,
    observability: ObservabilityManager | None = None,
) -> LocalExecutor:
    """Create a LocalExecutor configured from the application config."""

    return LocalExecutor(
        diagnostics=build_diagnostics_store(config),
        observability=observability,
        drain_timeout_s=config.executor.drain_timeout_s,
        kill_timeout_s=config.executor.kill_timeout_s,
    )


def build_spec(
    config: AppConfig,
    executable: str,
    arguments: Sequence[str] = (),
    *,
    env: Mapping[str, str] | None = None,
    timeout_s: float | None = None,
    capture_limit_bytes: int | None = None,
    cwd: Path | None = None,
) -> CommandSpec:
    """Build a CommandSpec, falling back to configured defaults for unset options."""

    merged_env = {**config.executor.env, **(env or {})}
    return CommandSpec(
        executable=executable,
        arguments=tuple(arguments),
        env=merged_env or None,
        timeout_s=timeout_s if timeout_s is not None else config.executor.timeout_s,
        capture_limit_bytes=(
            capture_limit_bytes
            if capture_limit_bytes is not None
            else config.executor.capture_limit_bytes
        ),
        cwd=cwd,
    )


def run_command(
    executable: str,
    arguments: Sequence[str] = (),
    *,
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_s: float | None = None,
    capture_limit_bytes: int | None = None,
    cwd: Path | None = None,
) -> CommandResult:
    """Run a single command synchronously using configured defaults.

    Returns:
        CommandResult of the invocation.

    Raises:
        AppConfigError: If the configuration cannot be loaded.
        CommandLaunchError: If the process could not be started.
        CommandTimeoutError: If the command exceeded its timeout.
    """

    config = load_app_config(config_path)
    spec = build_spec(
        config,
        executable,
        arguments,
        env=env,
        timeout_s=timeout_s,
        capture_limit_bytes=capture_limit_bytes,
        cwd=cwd,
    )
    executor = build_executor(config)
    return asyncio.run(executor.run(spec))


def load_last_diagnostics(config_path: Path | None = None) -> DiagnosticsRecord | None:
    """Return the persisted diagnostics of the most recent command, if any."""

    config = load_app_config(config_path)
    return build_diagnostics_store(config).load_last()
