"""
Central path configuration for the meter worker.

All filesystem paths are derived from a single base directory.

Path Structure:
    ~/.meter-worker/
    └── data/              (Persistent data)
        ├── identity.json
        └── logic.py

Usage:
    from meter_worker.paths import get_paths

    paths = get_paths()
    logic_path = paths.logic_path
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True, slots=True)
class Paths:
    """
    Immutable container for all filesystem paths used by the worker.

    All paths are derived from base_dir.
    """

    base_dir: Path
    data_dir: Path
    identity_path: Path
    logic_path: Path


def build_paths(base_dir: Optional[Path] = None) -> Paths:
    """
    Build Paths object from base directory.

    Args:
        base_dir: Base directory for all worker files.
                  Defaults to ~/.meter-worker.
                  Can be overridden via METER_WORKER_BASE_DIR env var.

    Returns:
        Immutable Paths object with all filesystem paths.
    """
    if base_dir is None:
        base_str = os.environ.get("METER_WORKER_BASE_DIR", "")
        base_dir = Path(base_str) if base_str else Path.home() / ".meter-worker"

    return Paths(
        base_dir=base_dir,
        data_dir=base_dir / "data",
        identity_path=base_dir / "data" / "identity.json",
        logic_path=base_dir / "data" / "logic.py",
    )


def ensure_dirs(paths: Paths) -> None:
    """
    Create all required directories if they don't exist.

    data_dir holds the secret key, so it is created 0o700.

    Raises:
        OSError: If directory creation fails due to permissions or other issues.
    """
    for dir_path, mode in [
        (paths.base_dir, 0o755),
        (paths.data_dir, 0o700),
    ]:
        dir_path.mkdir(parents=True, exist_ok=True)
        # mkdir may apply umask
        dir_path.chmod(mode)


# Global instance (lazy-initialized)
_paths: Optional[Paths] = None


def get_paths() -> Paths:
    """
    Get the global Paths instance.

    Lazily initializes on first call using build_paths() defaults.
    """
    global _paths
    if _paths is None:
        _paths = build_paths()
    return _paths


def set_paths(paths: Paths) -> None:
    """Set the global Paths instance (tests, custom layouts)."""
    global _paths
    _paths = paths


def reset_paths() -> None:
    """Force get_paths() to rebuild from defaults on next call."""
    global _paths
    _paths = None
