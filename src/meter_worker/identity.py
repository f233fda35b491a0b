"""
Worker identity — machine id and secret key used to authenticate the channel.

Path: {base_dir}/data/identity.json. Generated once on first run, read-only afterwards.
"""
from __future__ import annotations

import json
import logging
import os
import re
import secrets
import socket
import tempfile
from dataclasses import dataclass
from pathlib import Path

from meter_worker.mqtt_topics import TopicSchema, TopicSchemaError

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


class IdentityError(RuntimeError):
    """Raised when the persisted identity is missing fields or unreadable."""


@dataclass(frozen=True, slots=True)
class WorkerIdentity:
    machine_id: str
    secret_key: str

    def __post_init__(self) -> None:
        if not isinstance(self.machine_id, str) or not self.machine_id:
            raise IdentityError("machineId must be a non-empty string")
        try:
            TopicSchema(self.machine_id)
        except TopicSchemaError as exc:
            raise IdentityError(str(exc)) from exc
        if not isinstance(self.secret_key, str) or not self.secret_key:
            raise IdentityError("secretKey must be a non-empty string")

    def to_dict(self) -> dict[str, str]:
        return {"machineId": self.machine_id, "secretKey": self.secret_key}


def generate_identity(hostname: str | None = None) -> WorkerIdentity:
    """Host name (non-alphanumerics -> '-') plus 4 random hex chars, uppercased."""
    host = hostname if hostname is not None else socket.gethostname()
    pc_name = _NON_ALNUM_RE.sub("-", host) or "WORKER"
    machine_id = f"{pc_name}-{secrets.token_hex(2)}".upper()
    return WorkerIdentity(machine_id=machine_id, secret_key=secrets.token_hex(16))


def _write_identity(path: Path, identity: WorkerIdentity) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        delete=False,
        dir=str(path.parent),
    ) as tf:
        json.dump(identity.to_dict(), tf, indent=2)
        tf.flush()
        os.fsync(tf.fileno())
        tmp_path = Path(tf.name)
    tmp_path.chmod(0o600)
    os.replace(tmp_path, path)


def read_identity(path: Path) -> WorkerIdentity:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise IdentityError(f"Identity corrupted. Delete {path} and restart.") from exc

    if not isinstance(data, dict):
        raise IdentityError(f"Identity corrupted. Delete {path} and restart.")
    try:
        return WorkerIdentity(machine_id=data.get("machineId"), secret_key=data.get("secretKey"))
    except IdentityError as exc:
        raise IdentityError(f"Identity corrupted ({exc}). Delete {path} and restart.") from exc


def load_or_create_identity(path: Path) -> WorkerIdentity:
    """
    Return the persisted identity, generating and saving a new one if the file is absent.

    Raises IdentityError if the file exists but cannot be used.
    """
    if not path.exists():
        logger.info("No identity found. Generating new identity...")
        identity = generate_identity()
        _write_identity(path, identity)
        logger.info("Identity created! Machine ID: %s", identity.machine_id)
        return identity

    return read_identity(path)
