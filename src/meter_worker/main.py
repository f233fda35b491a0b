"""
Meter worker entrypoint.

CLI:
  meter-worker run     -> run worker (connect, sync logic, execute tasks)
  meter-worker init    -> create identity and placeholder logic, print machine id
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from dataclasses import dataclass
from typing import Optional

from meter_worker.config import package_version
from meter_worker.core.log_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


def get_version_string() -> str:
    return package_version()


@dataclass
class Runtime:
    shutdown: threading.Event
    agent: Optional[object] = None
    dispatcher: Optional[object] = None


def _install_signal_handlers(rt: Runtime) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        rt.shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def bootstrap(paths):
    """
    Ensure directories, identity and logic file exist.

    Returns (identity, store). Raises IdentityError if the identity file is corrupt.
    """
    from meter_worker.identity import load_or_create_identity
    from meter_worker.logic.store import LogicStore
    from meter_worker.paths import ensure_dirs

    ensure_dirs(paths)
    identity = load_or_create_identity(paths.identity_path)
    store = LogicStore(paths.logic_path)
    store.ensure_placeholder()
    return identity, store


def run_agent() -> int:
    """
    Runtime mode: load identity and logic, connect, block until shutdown.
    Returns process exit code.
    """
    from meter_worker.config import ConfigError, load_config
    from meter_worker.core.dispatcher import TaskDispatcher
    from meter_worker.core.progress import ProgressReporter
    from meter_worker.core.version_sync import VersionSync
    from meter_worker.identity import IdentityError
    from meter_worker.mqtt_client import WorkerMQTTClient
    from meter_worker.paths import get_paths

    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    try:
        identity, store = bootstrap(get_paths())
    except IdentityError as exc:
        logger.error("%s", exc)
        return 1

    store.reload()

    rt = Runtime(shutdown=threading.Event())
    _install_signal_handlers(rt)

    logger.info("============================================================")
    logger.info("Meter Worker")
    logger.info("Version: %s", get_version_string())
    logger.info("Machine ID: %s", identity.machine_id)
    logger.info("============================================================")

    agent = WorkerMQTTClient(
        cfg.mqtt_host,
        cfg.mqtt_port,
        identity,
        cfg.worker_version,
        heartbeat_interval_s=cfg.heartbeat_s,
    )
    rt.agent = agent

    version_sync = VersionSync(agent, store)
    version_sync.register()

    reporter = ProgressReporter(agent, min_interval_s=cfg.progress_interval_s)
    dispatcher = TaskDispatcher(
        agent,
        store,
        version_sync,
        reporter,
        max_workers=cfg.task_workers,
        timeout_s=cfg.task_timeout_s,
    )
    dispatcher.register()
    rt.dispatcher = dispatcher

    if not agent.connect():
        logger.error("MQTT connection failed")
        dispatcher.shutdown(wait=False)
        return 1

    logger.info("Worker running (shutdown via SIGINT/SIGTERM)")

    try:
        while not rt.shutdown.is_set():
            rt.shutdown.wait(0.5)
    finally:
        _shutdown(rt)

    return 0


def _shutdown(rt: Runtime) -> None:
    logger.info("Shutting down...")

    # Hung invocations cannot be interrupted, so do not wait on them
    if rt.dispatcher:
        try:
            rt.dispatcher.shutdown(wait=False)
        except Exception:
            logger.exception("Error stopping dispatcher")
        logger.info("Dispatcher stopped")

    if rt.agent:
        try:
            rt.agent.disconnect()
        except Exception:
            logger.exception("Error disconnecting MQTT")
        logger.info("MQTT disconnected")


def init_worker() -> int:
    from meter_worker.identity import IdentityError
    from meter_worker.paths import get_paths

    paths = get_paths()
    try:
        identity, _ = bootstrap(paths)
    except IdentityError as exc:
        logger.error("%s", exc)
        return 1
    print(identity.machine_id)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="meter-worker")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Run worker runtime")
    sub.add_parser("init", help="Create identity and placeholder logic, print machine id")

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "init":
        raise SystemExit(init_worker())

    if args.cmd == "run":
        raise SystemExit(run_agent())

    raise SystemExit(2)


if __name__ == "__main__":
    main()
