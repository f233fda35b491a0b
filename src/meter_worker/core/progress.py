"""
Progress forwarding for running tasks.

Publishes task_progress {requestId, progress} for updates reported by process_batch.
Progress is advisory: publish failures are logged and never reach the task.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Mapping

from meter_worker.core.channel import Channel
from meter_worker.mqtt_topics import EVT_TASK_PROGRESS

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    current: float
    total: float
    status: str = ""


def _as_dict(progress: Any) -> dict[str, Any]:
    if isinstance(progress, ProgressUpdate):
        return asdict(progress)
    if isinstance(progress, Mapping):
        return dict(progress)
    return {"status": str(progress)}


def _is_final(progress: Mapping[str, Any]) -> bool:
    current, total = progress.get("current"), progress.get("total")
    try:
        return current >= total
    except TypeError:
        return False


class ProgressReporter:
    """
    Forward progress updates as task_progress messages.

    With min_interval_s > 0, updates for the same task closer together than the
    interval are dropped, except the final one (current >= total).
    """

    def __init__(
        self,
        channel: Channel,
        *,
        min_interval_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel = channel
        self._min_interval_s = min_interval_s
        self._clock = clock
        self._lock = threading.Lock()
        self._last_sent: dict[str, float] = {}

    def _should_send(self, request_id: str, progress: Mapping[str, Any]) -> bool:
        if self._min_interval_s <= 0 or _is_final(progress):
            return True
        now = self._clock()
        with self._lock:
            last = self._last_sent.get(request_id)
            if last is not None and now - last < self._min_interval_s:
                return False
            self._last_sent[request_id] = now
            return True

    def report(self, request_id: str, progress: Any) -> bool:
        """Send one progress update. Returns True if it was published."""
        data = _as_dict(progress)
        if not self._should_send(request_id, data):
            return False

        logger.debug(
            "Meter: %s/%s | Status: %s (request_id=%s)",
            data.get("current"),
            data.get("total"),
            data.get("status"),
            request_id,
        )
        try:
            self._channel.send(EVT_TASK_PROGRESS, {"requestId": request_id, "progress": data})
        except Exception as exc:
            logger.warning("Failed to publish progress for %s: %s", request_id, exc)
            return False
        return True

    def bind(self, request_id: str) -> Callable[[Any], None]:
        """Return the on_progress callback handed to a running task."""

        def on_progress(progress: Any) -> None:
            self.report(request_id, progress)

        return on_progress

    def forget(self, request_id: str) -> None:
        with self._lock:
            self._last_sent.pop(request_id, None)
