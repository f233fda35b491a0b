"""
MQTT topic schema for the meter worker.

All topics under workers/<machine_id>/.
Retained: status (online/offline, also the LWT topic).
Inbound events from the coordinator: cmd/<event>.
Outbound events to the coordinator: evt/<event>.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_MACHINE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_EVENT_RE = re.compile(r"^[a-z0-9_]+$")

# Inbound
EVT_UPDATE_LOGIC_FILE = "update_logic_file"
EVT_LOGIC_UPTODATE = "logic_uptodate"
EVT_EXECUTE_TASK = "execute_task"

# Outbound
EVT_CHECK_VERSION = "check_version"
EVT_HEARTBEAT = "heartbeat"
EVT_TASK_PROGRESS = "task_progress"
EVT_TASK_COMPLETED = "task_completed"


class TopicSchemaError(ValueError):
    """Raised when an invalid identifier is used to construct topics."""


def _validate_machine_id(machine_id: str) -> str:
    if not isinstance(machine_id, str) or not machine_id:
        raise TopicSchemaError("machine_id must be a non-empty string")
    if not _MACHINE_ID_RE.fullmatch(machine_id):
        raise TopicSchemaError(
            f"machine_id '{machine_id}' is invalid; allowed: [A-Za-z0-9_-]+"
        )
    return machine_id


def _validate_event(event: str) -> str:
    if not isinstance(event, str) or not _EVENT_RE.fullmatch(event):
        raise TopicSchemaError(f"event '{event}' is invalid; allowed: [a-z0-9_]+")
    return event


@dataclass(frozen=True, slots=True)
class TopicSchema:
    """
    MQTT topic schema for a single worker.
    Root: workers/<machine_id>
    """

    machine_id: str

    def __post_init__(self) -> None:
        _validate_machine_id(self.machine_id)

    @property
    def base(self) -> str:
        return f"workers/{self.machine_id}"

    def status(self) -> str:
        return f"{self.base}/status"

    def cmd(self, event: str) -> str:
        return f"{self.base}/cmd/{_validate_event(event)}"

    def evt(self, event: str) -> str:
        return f"{self.base}/evt/{_validate_event(event)}"

