from __future__ import annotations

import pytest

from meter_worker.config import ConfigError, load_config

REQ = ["MQTT_HOST", "MQTT_PORT"]
OPT = ["WORKER_HEARTBEAT", "WORKER_TASK_WORKERS", "WORKER_TASK_TIMEOUT", "WORKER_PROGRESS_INTERVAL"]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for k in REQ + OPT:
        # setenv first so teardown also drops values loaded from .env files
        monkeypatch.setenv(k, "")
        monkeypatch.delenv(k)


def _set_required(monkeypatch) -> None:
    monkeypatch.setenv("MQTT_HOST", "10.0.0.1")
    monkeypatch.setenv("MQTT_PORT", "1883")


def test_missing_required_env_raises():
    with pytest.raises(ConfigError) as exc:
        load_config(dotenv_enabled=False)

    assert "Missing required environment variable" in str(exc.value)


def test_valid_env_loads_with_defaults(monkeypatch):
    _set_required(monkeypatch)

    cfg = load_config(dotenv_enabled=False)

    assert cfg.mqtt_host == "10.0.0.1"
    assert cfg.mqtt_port == 1883
    assert cfg.heartbeat_s == 10
    assert cfg.task_workers == 4
    assert cfg.task_timeout_s == 300
    assert cfg.progress_interval_s == 0.0
    assert isinstance(cfg.worker_version, str)
    assert cfg.worker_version  # non-empty


def test_optional_values_override(monkeypatch):
    _set_required(monkeypatch)
    monkeypatch.setenv("WORKER_HEARTBEAT", "0")
    monkeypatch.setenv("WORKER_TASK_WORKERS", "8")
    monkeypatch.setenv("WORKER_TASK_TIMEOUT", "0")
    monkeypatch.setenv("WORKER_PROGRESS_INTERVAL", "0.5")

    cfg = load_config(dotenv_enabled=False)

    assert cfg.heartbeat_s == 0
    assert cfg.task_workers == 8
    assert cfg.task_timeout_s == 0
    assert cfg.progress_interval_s == 0.5


def test_invalid_port_not_int_raises(monkeypatch):
    _set_required(monkeypatch)
    monkeypatch.setenv("MQTT_PORT", "not-a-number")

    with pytest.raises(ConfigError) as exc:
        load_config(dotenv_enabled=False)

    assert "Invalid integer for MQTT_PORT" in str(exc.value)


def test_port_out_of_range_raises(monkeypatch):
    _set_required(monkeypatch)
    monkeypatch.setenv("MQTT_PORT", "70000")

    with pytest.raises(ConfigError) as exc:
        load_config(dotenv_enabled=False)

    assert "out of range" in str(exc.value)


@pytest.mark.parametrize(
    "key,value",
    [
        ("WORKER_HEARTBEAT", "-1"),
        ("WORKER_TASK_WORKERS", "0"),
        ("WORKER_TASK_TIMEOUT", "-5"),
        ("WORKER_PROGRESS_INTERVAL", "-0.1"),
        ("WORKER_PROGRESS_INTERVAL", "fast"),
    ],
)
def test_invalid_optional_values_raise(monkeypatch, key, value):
    _set_required(monkeypatch)
    monkeypatch.setenv(key, value)

    with pytest.raises(ConfigError) as exc:
        load_config(dotenv_enabled=False)

    assert key in str(exc.value)


def test_dotenv_file_fills_missing_values(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    (tmp_path / ".env").write_text("MQTT_HOST=from-dotenv\nMQTT_PORT=1884\n")
    monkeypatch.setenv("MQTT_PORT", "1999")

    cfg = load_config()

    assert cfg.mqtt_host == "from-dotenv"
    # process env wins
    assert cfg.mqtt_port == 1999
