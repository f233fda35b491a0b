"""
Task dispatcher — execute_task → logic module invocation → task_completed.

Lifecycle per task (keyed by requestId):
  RECEIVED -> REJECTED                      logic not ready: re-send check_version, no result
  RECEIVED -> DISPATCHING -> EXECUTING -> COMPLETED
                                            exactly one task_completed {requestId, result}

The logic module snapshot is captured once when the task is received; a reload during
execution does not affect tasks already in flight. Tasks run on a bounded thread pool.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from meter_worker.core.channel import Channel
from meter_worker.core.progress import ProgressReporter
from meter_worker.core.tasks import Task, TaskParseError, TaskType, parse_task
from meter_worker.core.version_sync import VersionSync
from meter_worker.logic.module import (
    GET_INVENTORY_LIST,
    PROCESS_BATCH,
    VERIFY_LOGIN_DETAILS,
    VERIFY_METER,
    LogicModule,
)
from meter_worker.logic.store import LogicStore
from meter_worker.mqtt_topics import EVT_EXECUTE_TASK, EVT_TASK_COMPLETED

logger = logging.getLogger(__name__)

DEFAULT_INVENTORY_LIMIT = 50


class TaskState(str, Enum):
    RECEIVED = "received"
    REJECTED = "rejected"
    DISPATCHING = "dispatching"
    EXECUTING = "executing"
    COMPLETED = "completed"


def _field(obj: Any, name: str) -> Any:
    """Read name from a dict-like or attribute-style capability result."""
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def route_task(task: Task, module: LogicModule, on_progress: Callable[[Any], None]) -> Any:
    """
    Run the capability chain for task against module and build its result.

    Exceptions from capabilities propagate; the dispatcher converts them.
    """
    p = task.payload

    if task.task_type in (TaskType.METER_POST, TaskType.FAST_POST):
        return module.call(PROCESS_BATCH, p.get("userid"), p.get("password"), p.get("meters"), on_progress)

    if task.task_type is TaskType.LOGIN_CHECK:
        return module.call(VERIFY_LOGIN_DETAILS, p.get("userid"), p.get("password"))

    if task.task_type is TaskType.INVENTORY:
        logger.info("Logging in to fetch inventory...")
        auth = module.call(VERIFY_LOGIN_DETAILS, p.get("userid"), p.get("password"))
        if not _field(auth, "success"):
            logger.info("Login failed")
            return {"error": f"Login Failed: {_field(auth, 'message')}"}
        logger.info("Login success. Fetching meter list...")
        data = module.call(GET_INVENTORY_LIST, _field(auth, "cookies"), p.get("limit") or DEFAULT_INVENTORY_LIMIT)
        logger.info("Found %d meters.", len(data))
        return {"status": "success", "count": len(data), "data": data}

    if task.task_type is TaskType.SINGLE_CHECK:
        auth = module.call(VERIFY_LOGIN_DETAILS, p.get("userid"), p.get("password"))
        if not _field(auth, "success"):
            return {"error": "Login Failed"}
        check = module.call(VERIFY_METER, _field(auth, "cookies"), p.get("meterNo"))
        if _field(check, "found"):
            return {"status": "found", "data": _field(check, "data")}
        return {"status": "not_found"}

    return {"error": "Unknown Task Type"}


@dataclass(eq=False)
class TaskRun:
    task: Task
    module: LogicModule
    state: TaskState = TaskState.RECEIVED
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    timer: Optional[threading.Timer] = field(default=None, repr=False)
    future: Optional[Future] = field(default=None, repr=False)


class TaskDispatcher:
    """
    Turns execute_task messages into logic module invocations.

    Never raises into the channel layer: every failure becomes a structured result,
    a dropped message, or a re-sent version check.
    """

    def __init__(
        self,
        channel: Channel,
        store: LogicStore,
        version_sync: VersionSync,
        reporter: ProgressReporter,
        *,
        max_workers: int = 4,
        timeout_s: float = 0,
        executor: Optional[Executor] = None,
    ) -> None:
        self._channel = channel
        self._store = store
        self._version_sync = version_sync
        self._reporter = reporter
        self._timeout_s = timeout_s
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="task"
        )
        self._runs_lock = threading.Lock()
        self._runs: dict[str, TaskRun] = {}

    def register(self) -> None:
        self._channel.on_message(EVT_EXECUTE_TASK, self.on_execute_task)

    def in_flight(self) -> list[str]:
        with self._runs_lock:
            return list(self._runs)

    def on_execute_task(self, payload_str: str) -> TaskState:
        # Readiness comes first: any execute_task while not ready triggers a version check
        module = self._store.current()
        if not module.ready:
            return self._reject_not_ready()
        try:
            task = parse_task(payload_str)
        except TaskParseError as exc:
            logger.error("Dropping execute_task: %s", exc)
            return TaskState.REJECTED
        return self._dispatch(task, module)

    def submit(self, task: Task) -> TaskState:
        module = self._store.current()
        if not module.ready:
            return self._reject_not_ready(task.request_id)
        return self._dispatch(task, module)

    def _reject_not_ready(self, request_id: Optional[str] = None) -> TaskState:
        logger.warning("Logic not ready. Waiting for download... (request_id=%s)", request_id)
        self._version_sync.request_check()
        return TaskState.REJECTED

    def _dispatch(self, task: Task, module: LogicModule) -> TaskState:
        run = TaskRun(task=task, module=module, state=TaskState.DISPATCHING)
        with self._runs_lock:
            if task.request_id in self._runs:
                logger.warning("Task %s already in flight; ignoring duplicate", task.request_id)
                return TaskState.REJECTED
            self._runs[task.request_id] = run

        try:
            run.future = self._executor.submit(self._execute, run)
        except RuntimeError as exc:
            # executor shut down
            with self._runs_lock:
                self._runs.pop(task.request_id, None)
            logger.error("Cannot dispatch task %s: %s", task.request_id, exc)
            return TaskState.REJECTED
        return TaskState.DISPATCHING

    def _execute(self, run: TaskRun) -> None:
        task = run.task
        with run.lock:
            if run.state is not TaskState.DISPATCHING:
                return
            run.state = TaskState.EXECUTING
            if self._timeout_s > 0:
                run.timer = threading.Timer(self._timeout_s, self._on_timeout, args=(run,))
                run.timer.daemon = True
                run.timer.start()

        logger.info("Processing Task: %s | ID: %s...", task.raw_type, task.short_id)
        try:
            result = route_task(task, run.module, self._progress_callback(run))
        except Exception as exc:
            logger.exception("Task %s failed: %s", task.request_id, exc)
            result = {"error": str(exc), "failed": 1}
        finally:
            if run.timer is not None:
                run.timer.cancel()

        self._complete(run, result)

    def _progress_callback(self, run: TaskRun) -> Callable[[Any], None]:
        """Progress callback for run; updates after completion are dropped."""
        report = self._reporter.bind(run.task.request_id)

        def on_progress(progress: Any) -> None:
            # Held while sending so no update can follow task_completed
            with run.lock:
                if run.state is TaskState.COMPLETED:
                    return
                report(progress)

        return on_progress

    def _on_timeout(self, run: TaskRun) -> None:
        logger.error("Task %s timed out after %ss", run.task.request_id, self._timeout_s)
        self._complete(run, {"error": f"Task timed out after {self._timeout_s}s", "failed": 1})

    def _complete(self, run: TaskRun, result: Any) -> bool:
        """Emit task_completed once per run. Later calls are discarded."""
        request_id = run.task.request_id
        with run.lock:
            if run.state is TaskState.COMPLETED:
                logger.warning("Discarding late result for task %s", request_id)
                return False
            run.state = TaskState.COMPLETED

        with self._runs_lock:
            if self._runs.get(request_id) is run:
                del self._runs[request_id]
        self._reporter.forget(request_id)

        try:
            self._channel.send(EVT_TASK_COMPLETED, {"requestId": request_id, "result": result})
        except (TypeError, ValueError) as exc:
            logger.error("Task %s result is not serializable: %s", request_id, exc)
            self._send_fallback(request_id, f"result not serializable: {exc}")
        except Exception:
            logger.exception("Failed to publish result for task %s", request_id)
            return True

        logger.info("Task finished: %s", request_id)
        return True

    def _send_fallback(self, request_id: str, error: str) -> None:
        try:
            self._channel.send(EVT_TASK_COMPLETED, {"requestId": request_id, "result": {"error": error, "failed": 1}})
        except Exception:
            logger.exception("Failed to publish result for task %s", request_id)

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting tasks.

        Queued tasks that have not started are cancelled and completed with a
        shutdown error, so every accepted requestId still gets one task_completed.
        """
        self._executor.shutdown(wait=wait, cancel_futures=True)
        with self._runs_lock:
            cancelled = [
                run for run in self._runs.values()
                if run.future is not None and run.future.cancelled()
            ]
        for run in cancelled:
            logger.warning("Task %s cancelled before it started", run.task.request_id)
            self._complete(run, {"error": "Worker shutting down", "failed": 1})
