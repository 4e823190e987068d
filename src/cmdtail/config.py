"""Configuration models and loaders for cmdtail."""

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_FILE_NAMES: tuple[str, ...] = ("cmdtail.yaml", "cmdtail.yml", "pyproject.toml")
DEFAULT_DIAGNOSTICS_PATH = Path("~/.cmdtail/last_command.json")
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass(frozen=True)
class ExecutorConfig:
    """Defaults applied to every command run through the CLI or app helpers.

    Attributes:
        timeout_s: Default timeout in seconds, None for no timeout.
        capture_limit_bytes: Default per-stream capture limit, None for unbounded.
        env: Environment overrides applied to every command.
        drain_timeout_s: Grace period for reading residual output after exit.
        kill_timeout_s: Grace period for a killed process to exit.
    """

    timeout_s: float | None = None
    capture_limit_bytes: int | None = None
    env: dict[str, str] = field(default_factory=dict)
    drain_timeout_s: float = 1.0
    kill_timeout_s: float = 5.0


@dataclass(frozen=True)
class DiagnosticsConfig:
    """Configuration for last-command diagnostics persistence."""

    enabled: bool = True
    path: Path = DEFAULT_DIAGNOSTICS_PATH


@dataclass(frozen=True)
class AppConfig:
    """Top-level configuration for the application.

    Attributes:
        executor: Command execution defaults.
        diagnostics: Diagnostics persistence settings.
        log_level: Logging level name.
    """

    executor: ExecutorConfig = field(default_factory=lambda: ExecutorConfig())
    diagnostics: DiagnosticsConfig = field(default_factory=lambda: DiagnosticsConfig())
    log_level: str = DEFAULT_LOG_LEVEL


def load_config(path: Path | None = None) -> AppConfig:
    """Load application configuration from disk.

    Args:
        path: Optional path to a configuration file or directory.

    Returns:
        Parsed AppConfig with defaults applied when no config exists.
    """

    config_path = _resolve_config_path(path)
    if config_path is None:
        return AppConfig()

    if config_path.suffix in {".yaml", ".yml"}:
        raw_data = _load_yaml(config_path)
    elif config_path.name == "pyproject.toml" or config_path.suffix == ".toml":
        raw_data = _load_toml(config_path)
    else:
        raise ValueError(f"Unsupported config file type: {config_path}")

    return _parse_app_config(raw_data, base_path=config_path.parent)


def config_to_dict(config: AppConfig) -> dict[str, Any]:
    """Serialize an AppConfig into a JSON-compatible dictionary."""

    return {
        "log_level": config.log_level,
        "executor": {
            "timeout_s": config.executor.timeout_s,
            "capture_limit_bytes": config.executor.capture_limit_bytes,
            "env": dict(config.executor.env),
            "drain_timeout_s": config.executor.drain_timeout_s,
            "kill_timeout_s": config.executor.kill_timeout_s,
        },
        "diagnostics": {
            "enabled": config.diagnostics.enabled,
            "path": str(config.diagnostics.path),
        },
    }


def _resolve_config_path(path: Path | None) -> Path | None:
    candidate_paths: list[Path] = []
    if path is None:
        candidate_paths.extend(Path(name) for name in CONFIG_FILE_NAMES)
    elif path.is_dir():
        candidate_paths.extend(path / name for name in CONFIG_FILE_NAMES)
    else:
        candidate_paths.append(path)

    for candidate in candidate_paths:
        if candidate.exists():
            return candidate
    return None


def _load_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    if path.name == "pyproject.toml":
        tool_config = data.get("tool", {}).get("cmdtail", {})
        if not isinstance(tool_config, dict):
            raise ValueError("tool.cmdtail must be a mapping.")
        return tool_config
    if not isinstance(data, dict):
        raise ValueError("TOML configuration must be a mapping.")
    return data


def _load_yaml(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if data is not None:
        if not isinstance(data, dict):
            raise ValueError("YAML configuration must be a mapping.")
        return data
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "PyYAML is required to parse non-JSON YAML configuration files."
        ) from exc
    parsed = yaml.safe_load(text)
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValueError("YAML configuration must be a mapping.")
    return parsed


def _parse_app_config(raw_data: dict[str, Any], base_path: Path) -> AppConfig:
    return AppConfig(
        executor=_parse_executor_config(raw_data.get("executor", {})),
        diagnostics=_parse_diagnostics_config(raw_data.get("diagnostics", {}), base_path),
        log_level=str(raw_data.get("log_level", DEFAULT_LOG_LEVEL)),
    )


def _parse_executor_config(raw: Any) -> ExecutorConfig:
    if not isinstance(raw, dict):
        return ExecutorConfig()
    env = raw.get("env", {})
    env_map: dict[str, str] = {}
    if isinstance(env, dict):
        env_map = {str(key): str(value) for key, value in env.items()}
    capture_limit = _optional_int(raw.get("capture_limit_bytes"))
    if capture_limit is not None and capture_limit < 0:
        raise ValueError("executor.capture_limit_bytes must not be negative.")
    return ExecutorConfig(
        timeout_s=_optional_float(raw.get("timeout_s")),
        capture_limit_bytes=capture_limit,
        env=env_map,
        drain_timeout_s=float(raw.get("drain_timeout_s", 1.0)),
        kill_timeout_s=float(raw.get("kill_timeout_s", 5.0)),
    )


def _parse_diagnostics_config(raw: Any, base_path: Path) -> DiagnosticsConfig:
    if not isinstance(raw, dict):
        return DiagnosticsConfig()
    path = Path(str(raw.get("path", DEFAULT_DIAGNOSTICS_PATH))).expanduser()
    if not path.is_absolute():
        path = (base_path / path).resolve()
    return DiagnosticsConfig(
        enabled=bool(raw.get("enabled", True)),
        path=path,
    )


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)
