"""CLI entrypoints for cmdtail."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from cmdtail.app import (
    AppConfigError,
    initialize_config,
    load_app_config,
    load_last_diagnostics,
    run_command,
)
from cmdtail.config import DEFAULT_LOG_LEVEL
from cmdtail.execution.base import CommandLaunchError, CommandTimeoutError
from cmdtail.util.logging import configure_logging

EXIT_TIMEOUT = 124
EXIT_LAUNCH_FAILURE = 127
EXIT_INTERRUPTED = 130

app = typer.Typer(help="Run commands with bounded output capture and last-run diagnostics.")


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (e.g., DEBUG, INFO, WARNING). Overrides the config file.",
    ),
) -> None:
    """Configure CLI-level options."""

    ctx.obj = {"log_level": log_level}
    if log_level:
        configure_logging(log_level)


@app.command()
def init(ctx: typer.Context, workspace: Path = typer.Argument(Path("."))) -> None:
    """Write a default cmdtail.yaml into a workspace."""

    if not _explicit_log_level(ctx):
        configure_logging(DEFAULT_LOG_LEVEL)
    try:
        config_path = initialize_config(workspace)
    except AppConfigError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"Created configuration at {config_path}")


@app.command(
    "run",
    context_settings={"allow_interspersed_args": False, "ignore_unknown_options": True},
)
def run_command_cli(
    ctx: typer.Context,
    executable: str = typer.Argument(..., help="Program to run."),
    arguments: Optional[list[str]] = typer.Argument(None, help="Arguments passed to the program."),
    timeout_s: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Kill the command after this many seconds."
    ),
    capture_limit_bytes: Optional[int] = typer.Option(
        None, "--capture-limit", help="Keep only the last N bytes of each stream."
    ),
    env: Optional[list[str]] = typer.Option(
        None, "--env", "-e", help="Environment override as KEY=VALUE; repeatable."
    ),
    cwd: Optional[Path] = typer.Option(None, "--cwd", help="Working directory for the command."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file or directory."),
) -> None:
    """Run a command and exit with its exit code."""

    _apply_config_log_level(ctx, config_path)
    try:
        env_overrides = _parse_env(env or [])
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc

    try:
        result = run_command(
            executable,
            list(arguments or []),
            config_path=config_path,
            env=env_overrides,
            timeout_s=timeout_s,
            capture_limit_bytes=capture_limit_bytes,
            cwd=cwd,
        )
    except AppConfigError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    except CommandLaunchError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=EXIT_LAUNCH_FAILURE) from exc
    except CommandTimeoutError as exc:
        _echo_output(exc.result.stdout, exc.result.stderr)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=EXIT_TIMEOUT) from exc
    except KeyboardInterrupt as exc:
        typer.echo("Interrupted.", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED) from exc

    _echo_output(result.stdout, result.stderr)
    if result.was_cancelled:
        raise typer.Exit(code=EXIT_INTERRUPTED)
    # Negative codes are signal deaths; report them the way shells do.
    raise typer.Exit(code=result.exit_code if result.exit_code >= 0 else 128 - result.exit_code)


@app.command("diagnostics")
def diagnostics_command(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file or directory."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw record as JSON."),
) -> None:
    """Show diagnostics for the most recently run command."""

    _apply_config_log_level(ctx, config_path)
    try:
        record = load_last_diagnostics(config_path)
    except AppConfigError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc

    if record is None:
        typer.echo("No command diagnostics recorded.")
        return
    if as_json:
        typer.echo(json.dumps(record.to_dict(), indent=2, sort_keys=True))
    else:
        typer.echo(record.report_text)


def _explicit_log_level(ctx: typer.Context) -> Optional[str]:
    return (ctx.obj or {}).get("log_level")


def _apply_config_log_level(ctx: typer.Context, config_path: Optional[Path]) -> None:
    if _explicit_log_level(ctx):
        return
    try:
        level = load_app_config(config_path).log_level
    except AppConfigError:
        # The command reports the config error itself.
        level = DEFAULT_LOG_LEVEL
    configure_logging(level)


def _parse_env(pairs: list[str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Environment override must look like KEY=VALUE, got '{pair}'.")
        overrides[key] = value
    return overrides


def _echo_output(stdout: str, stderr: str) -> None:
    if stdout:
        typer.echo(stdout, nl=False)
    if stderr:
        typer.echo(stderr, nl=False, err=True)
