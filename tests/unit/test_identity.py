"""
Tests for worker identity bootstrap.
"""

import json
import re

import pytest

from meter_worker.identity import (
    IdentityError,
    WorkerIdentity,
    generate_identity,
    load_or_create_identity,
    read_identity,
)


def test_generate_identity_format():
    identity = generate_identity("office.pc_01")

    assert re.fullmatch(r"OFFICE-PC-01-[0-9A-F]{4}", identity.machine_id)
    assert re.fullmatch(r"[0-9a-f]{32}", identity.secret_key)


def test_generated_identities_differ():
    assert generate_identity("host").secret_key != generate_identity("host").secret_key


def test_empty_fields_rejected():
    with pytest.raises(IdentityError):
        WorkerIdentity(machine_id="", secret_key="x")
    with pytest.raises(IdentityError):
        WorkerIdentity(machine_id="A", secret_key="")
    with pytest.raises(IdentityError):
        WorkerIdentity(machine_id="pc/1", secret_key="x")


def test_load_or_create_persists_and_is_stable(tmp_path):
    path = tmp_path / "data" / "identity.json"

    first = load_or_create_identity(path)
    second = load_or_create_identity(path)

    assert first == second
    stored = json.loads(path.read_text())
    assert stored == {"machineId": first.machine_id, "secretKey": first.secret_key}
    assert path.stat().st_mode & 0o777 == 0o600


def test_existing_identity_is_read(tmp_path):
    path = tmp_path / "identity.json"
    path.write_text(json.dumps({"machineId": "PC-1234", "secretKey": "abc"}))

    assert load_or_create_identity(path) == WorkerIdentity("PC-1234", "abc")


@pytest.mark.parametrize(
    "content",
    [
        "{corrupt",
        "[]",
        json.dumps({"machineId": "PC-1"}),
        json.dumps({"machineId": 1, "secretKey": "k"}),
        json.dumps({"machineId": "office.pc", "secretKey": "k"}),
    ],
)
def test_corrupt_identity_raises(tmp_path, content):
    path = tmp_path / "identity.json"
    path.write_text(content)

    with pytest.raises(IdentityError) as exc:
        read_identity(path)

    assert "Delete" in str(exc.value)
