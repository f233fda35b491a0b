"""
Worker configuration.

Single source for runtime configuration. Values come from environment variables,
optionally loaded from standard env files.

Priority (lowest -> highest):
1) /etc/meter-worker/worker.env (system install)
2) ~/.config/meter-worker/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
from typing import Iterable

DEFAULT_HEARTBEAT_S = 10
DEFAULT_TASK_WORKERS = 4
DEFAULT_TASK_TIMEOUT_S = 300


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def package_version() -> str:
    try:
        return _pkg_version("meter-worker-agent")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/meter-worker/worker.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "meter-worker" / ".env"

    # 3) project override
    yield Path(".env")


def _require_env(key: str) -> str:
    v = os.getenv(key)
    if v is None or v == "":
        raise ConfigError(f"Missing required environment variable: {key}")
    return v


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


def _parse_float(key: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {key}: {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class WorkerConfig:
    mqtt_host: str
    mqtt_port: int
    worker_version: str
    heartbeat_s: int  # 0 disables heartbeat
    task_workers: int
    task_timeout_s: int  # 0 disables the timeout
    progress_interval_s: float  # 0 forwards every update


def load_config(*, dotenv_enabled: bool = True) -> WorkerConfig:
    """
    Load config by reading env files and then validating environment variables.

    Returns an immutable WorkerConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        from dotenv import load_dotenv

        for p in _env_paths():
            if p.is_file():
                # do not override existing env vars; later files can fill missing
                load_dotenv(p, override=False)

    mqtt_host = _require_env("MQTT_HOST")
    mqtt_port = _parse_int("MQTT_PORT", _require_env("MQTT_PORT"))
    if not (1 <= mqtt_port <= 65535):
        raise ConfigError(f"MQTT_PORT out of range: {mqtt_port}")

    heartbeat_s = _parse_int("WORKER_HEARTBEAT", os.getenv("WORKER_HEARTBEAT", str(DEFAULT_HEARTBEAT_S)))
    if heartbeat_s < 0:
        raise ConfigError("WORKER_HEARTBEAT must be >= 0 (0 disables)")

    task_workers = _parse_int("WORKER_TASK_WORKERS", os.getenv("WORKER_TASK_WORKERS", str(DEFAULT_TASK_WORKERS)))
    if task_workers < 1:
        raise ConfigError("WORKER_TASK_WORKERS must be >= 1")

    task_timeout_s = _parse_int(
        "WORKER_TASK_TIMEOUT", os.getenv("WORKER_TASK_TIMEOUT", str(DEFAULT_TASK_TIMEOUT_S))
    )
    if task_timeout_s < 0:
        raise ConfigError("WORKER_TASK_TIMEOUT must be >= 0 (0 disables)")

    progress_interval_s = _parse_float("WORKER_PROGRESS_INTERVAL", os.getenv("WORKER_PROGRESS_INTERVAL", "0"))
    if progress_interval_s < 0:
        raise ConfigError("WORKER_PROGRESS_INTERVAL must be >= 0")

    return WorkerConfig(
        mqtt_host=mqtt_host,
        mqtt_port=mqtt_port,
        worker_version=package_version(),
        heartbeat_s=heartbeat_s,
        task_workers=task_workers,
        task_timeout_s=task_timeout_s,
        progress_interval_s=progress_interval_s,
    )
