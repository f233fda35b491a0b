"""
Pytest configuration and shared fixtures
"""
import json
import os
import sys
import threading
import time

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from meter_worker.identity import WorkerIdentity  # noqa: E402
from meter_worker.paths import build_paths, reset_paths, set_paths  # noqa: E402


READY_LOGIC = '''
def process_batch(userid, password, meters, on_progress):
    total = len(meters)
    for i, meter in enumerate(meters, start=1):
        on_progress({"current": i, "total": total, "status": "posted " + meter})
    return {"success": total, "failed": 0}


def verify_login_details(userid, password):
    if password == "pw":
        return {"success": True, "cookies": "session=1"}
    return {"success": False, "message": "bad password"}
'''

BROKEN_LOGIC = "def process_batch(:\n"


class FakeChannel:
    """In-memory channel recording sent events."""

    def __init__(self):
        self.sent = []
        self.handlers = {}
        self.connected_callbacks = []
        self._cond = threading.Condition()

    def send(self, event, payload):
        json.dumps(payload)  # same encoding failure as the MQTT client
        with self._cond:
            self.sent.append((event, payload))
            self._cond.notify_all()

    def on_message(self, event, handler):
        self.handlers[event] = handler

    def on_connected(self, callback):
        self.connected_callbacks.append(callback)

    def events(self, name):
        with self._cond:
            return [payload for event, payload in self.sent if event == name]

    def wait_for(self, name, count=1, timeout=5.0):
        deadline = time.monotonic() + timeout
        with self._cond:
            while len([e for e, _ in self.sent if e == name]) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True


class ImmediateExecutor:
    """Runs submitted work synchronously."""

    def submit(self, fn, *args):
        fn(*args)

    def shutdown(self, *a, **k):
        pass


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def identity():
    return WorkerIdentity(machine_id="WORKER-AB12", secret_key="s3cret")


@pytest.fixture
def worker_paths(tmp_path):
    paths = build_paths(tmp_path / "worker_base")
    set_paths(paths)
    yield paths
    reset_paths()


@pytest.fixture
def logic_path(tmp_path):
    return tmp_path / "logic.py"


@pytest.fixture
def ready_logic():
    return READY_LOGIC


@pytest.fixture
def broken_logic():
    return BROKEN_LOGIC


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()
