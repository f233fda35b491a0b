from __future__ import annotations

import pytest

from meter_worker.logic.module import compute_hash
from meter_worker.logic.store import PLACEHOLDER, LogicStore, LogicStoreError


def test_local_hash_is_none_when_file_absent(logic_path):
    store = LogicStore(logic_path)
    assert store.local_hash() is None


def test_write_replaces_content_and_hash(logic_path):
    store = LogicStore(logic_path)
    store.write(b"v1")
    store.write(b"v2")

    assert logic_path.read_bytes() == b"v2"
    assert store.local_hash() == compute_hash(b"v2")
    # no temp files left behind
    assert [p.name for p in logic_path.parent.iterdir()] == ["logic.py"]


def test_write_failure_raises_store_error(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    store = LogicStore(blocker / "logic.py")

    with pytest.raises(LogicStoreError):
        store.write(b"content")


def test_failed_replace_leaves_no_temp_file(logic_path, monkeypatch):
    store = LogicStore(logic_path)
    store.write(b"v1")

    def fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("meter_worker.logic.store.os.replace", fail_replace)

    with pytest.raises(LogicStoreError):
        store.write(b"v2")

    assert [p.name for p in logic_path.parent.iterdir()] == ["logic.py"]
    assert logic_path.read_bytes() == b"v1"


def test_ensure_placeholder_only_creates_once(logic_path):
    store = LogicStore(logic_path)

    assert store.ensure_placeholder() is True
    assert logic_path.read_bytes() == PLACEHOLDER

    logic_path.write_bytes(b"real code")
    assert store.ensure_placeholder() is False
    assert logic_path.read_bytes() == b"real code"


def test_current_starts_empty_and_reload_swaps_reference(logic_path, ready_logic):
    store = LogicStore(logic_path)
    before = store.current()
    assert before.ready is False

    logic_path.write_text(ready_logic, encoding="utf-8")
    after = store.reload()

    assert after is store.current()
    assert after is not before
    assert after.ready is True
    # the old snapshot is untouched
    assert before.ready is False


def test_reload_failure_keeps_current(logic_path, ready_logic, broken_logic):
    store = LogicStore(logic_path)
    logic_path.write_text(ready_logic, encoding="utf-8")
    good = store.reload()

    logic_path.write_text(broken_logic, encoding="utf-8")

    assert store.reload() is good
    assert store.current().ready is True
