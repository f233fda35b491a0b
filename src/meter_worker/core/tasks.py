"""
Task model for execute_task messages.

Wire payload: {"requestId": str, "taskType": str, "payload": {...}}.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class TaskType(str, Enum):
    METER_POST = "METER_POST"
    FAST_POST = "FAST_POST"
    LOGIN_CHECK = "LOGIN_CHECK"
    INVENTORY = "INVENTORY"
    SINGLE_CHECK = "SINGLE_CHECK"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: Any) -> "TaskType":
        if isinstance(raw, str) and raw != cls.UNKNOWN.value:
            try:
                return cls(raw)
            except ValueError:
                pass
        return cls.UNKNOWN


class TaskParseError(ValueError):
    """Raised when an execute_task payload cannot be turned into a Task."""


@dataclass(frozen=True, slots=True)
class Task:
    request_id: str
    task_type: TaskType
    payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    raw_type: str = ""

    @property
    def short_id(self) -> str:
        return self.request_id[:6]


def parse_task(payload_str: str) -> Task:
    """
    Parse a raw execute_task payload.

    Unknown or missing taskType is not an error (it becomes TaskType.UNKNOWN);
    a missing requestId is, since no result could be addressed.
    """
    try:
        obj = json.loads(payload_str) if payload_str else {}
    except json.JSONDecodeError as exc:
        raise TaskParseError(f"invalid JSON: {exc}") from exc

    if not isinstance(obj, dict):
        raise TaskParseError("payload must be a dict")

    request_id = obj.get("requestId")
    if not isinstance(request_id, str) or not request_id:
        raise TaskParseError("requestId must be a non-empty string")

    raw_type = obj.get("taskType")
    payload = obj.get("payload")
    if not isinstance(payload, dict):
        payload = {}

    return Task(
        request_id=request_id,
        task_type=TaskType.parse(raw_type),
        payload=MappingProxyType(payload),
        raw_type=raw_type if isinstance(raw_type, str) else repr(raw_type),
    )
