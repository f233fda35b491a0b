"""
Logic store — the single swappable reference to the current LogicModule.

Path: {base_dir}/data/logic.py. Atomic writes with fsync.
Readers take current() once and keep that snapshot; reload() installs a new one.
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from meter_worker.logic.module import LogicModule, compute_hash, load_logic_module

logger = logging.getLogger(__name__)

PLACEHOLDER = b"# Waiting for server update...\n"


class LogicStoreError(RuntimeError):
    """Raised when the logic file cannot be persisted."""


def _fsync_dir(path: Path) -> None:
    """
    Ensure directory metadata is flushed so atomic rename is durable.
    """
    fd = os.open(str(path), os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class LogicStore:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._module = LogicModule.empty()

    def current(self) -> LogicModule:
        return self._module

    def local_hash(self) -> Optional[str]:
        """Hash of the on-disk content, or None if absent or unreadable."""
        try:
            return compute_hash(self.path.read_bytes())
        except OSError:
            return None

    def reload(self) -> LogicModule:
        with self._lock:
            self._module = load_logic_module(self.path, previous=self._module)
            return self._module

    def write(self, content: bytes) -> None:
        """
        Atomic, durable write:
        - write temp file + fsync
        - replace
        - fsync directory
        """
        tmp_path: Optional[Path] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                with tempfile.NamedTemporaryFile(
                    mode="wb",
                    delete=False,
                    dir=str(self.path.parent),
                ) as tf:
                    tmp_path = Path(tf.name)
                    tf.write(content)
                    tf.flush()
                    os.fsync(tf.fileno())

                os.replace(tmp_path, self.path)
                _fsync_dir(self.path.parent)
        except OSError as exc:
            if tmp_path is not None:
                # gone already if the replace went through
                tmp_path.unlink(missing_ok=True)
            raise LogicStoreError(f"failed to write logic file: {exc}") from exc

    def ensure_placeholder(self) -> bool:
        """Create a placeholder logic file if none exists. Returns True if created."""
        if self.path.exists():
            return False
        logger.warning("Logic file missing. Creating placeholder...")
        self.write(PLACEHOLDER)
        logger.info("Placeholder logic created. Real code will be downloaded from the coordinator.")
        return True
