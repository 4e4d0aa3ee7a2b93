from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .models import Application

CACHE_FOLDERS = {"__pycache__", ".pytest_cache", ".cache", ".ruff_cache"}
EXCLUDED_FOLDERS = {"node_modules", ".tox", ".venv", ".git"} | CACHE_FOLDERS
EXCLUDED_FILE_NAMES = {".DS_Store", "Icon\r"}

MAX_PATH_LENGTH = 4096
UNSAFE_PATH_CHARS = set(";&|`$><()")

DEFAULT_CONFIG_PATH = Path("~/.config/drmirror/drmirror.toml")
CONFIG_ENV_VAR = "DRMIRROR_CONFIG"
DEFAULT_COMMAND_TIMEOUT = 300.0
RAW_OUTPUT_PREVIEW_CHARS = 500


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class CompareSettings:
    dr_newer_forces_sync: bool = False
    mtime_tolerance_seconds: float = 0.0


@dataclass(frozen=True)
class ExecutorConfig:
    # Empty commands select the built-in local implementations.
    list_command: tuple[str, ...] = ()
    sync_command: tuple[str, ...] = ()
    timeout: float = DEFAULT_COMMAND_TIMEOUT


@dataclass(frozen=True)
class AppConfig:
    application: Application | None = None
    compare: CompareSettings = field(default_factory=CompareSettings)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    max_depth: int | None = None


def _command(value: object, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return tuple(value)
    raise ConfigError(f"{key} must be a string or a list of strings")


def _table(data: dict[str, object], name: str) -> dict[str, object]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def parse_config(data: dict[str, object]) -> AppConfig:
    app_table = _table(data, "application")
    application = None
    if app_table:
        missing = [
            key for key in ("name", "primary_path", "dr_path") if not app_table.get(key)
        ]
        if missing:
            raise ConfigError(f"[application] is missing: {', '.join(missing)}")
        application = Application(
            name=str(app_table["name"]),
            primary_path=str(app_table["primary_path"]),
            dr_path=str(app_table["dr_path"]),
        )

    compare_table = _table(data, "compare")
    try:
        compare = CompareSettings(
            dr_newer_forces_sync=bool(compare_table.get("dr_newer_forces_sync", False)),
            mtime_tolerance_seconds=float(
                compare_table.get("mtime_tolerance_seconds", 0.0)
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid [compare] value: {exc}") from exc

    executor_table = _table(data, "executor")
    provider_table = _table(data, "provider")
    try:
        timeout = float(executor_table.get("timeout", DEFAULT_COMMAND_TIMEOUT))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid [executor] timeout: {exc}") from exc
    executor = ExecutorConfig(
        list_command=_command(provider_table.get("command"), "provider.command"),
        sync_command=_command(executor_table.get("command"), "executor.command"),
        timeout=timeout,
    )

    max_depth = provider_table.get("max_depth")
    if max_depth is not None and (not isinstance(max_depth, int) or max_depth < 0):
        raise ConfigError("provider.max_depth must be a non-negative integer")

    return AppConfig(
        application=application,
        compare=compare,
        executor=executor,
        max_depth=max_depth,
    )


def resolve_config_path(path: Path | None = None) -> Path:
    if path is not None:
        return path.expanduser()
    env_value = os.getenv(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def load_config(path: Path | None = None) -> AppConfig:
    """Load the TOML configuration, returning defaults when no file exists.

    An explicitly requested file that is missing is an error; the default
    location is optional.
    """
    resolved = resolve_config_path(path)
    if not resolved.exists():
        if path is not None or os.getenv(CONFIG_ENV_VAR):
            raise ConfigError(f"config file not found: {resolved}")
        return AppConfig()
    try:
        data = tomllib.loads(resolved.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {resolved}: {exc}") from exc
    return parse_config(data)
