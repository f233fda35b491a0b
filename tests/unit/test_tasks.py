from __future__ import annotations

import json

import pytest

from meter_worker.core.tasks import TaskParseError, TaskType, parse_task


def test_parse_known_task():
    task = parse_task(json.dumps({
        "requestId": "abcdef123",
        "taskType": "METER_POST",
        "payload": {"userid": "u", "meters": ["1"]},
    }))

    assert task.request_id == "abcdef123"
    assert task.task_type is TaskType.METER_POST
    assert task.payload["meters"] == ["1"]
    assert task.short_id == "abcdef"


@pytest.mark.parametrize("raw", ["BOGUS", None, 7, "UNKNOWN", "meter_post"])
def test_unrecognised_type_is_unknown(raw):
    task = parse_task(json.dumps({"requestId": "r", "taskType": raw}))

    assert task.task_type is TaskType.UNKNOWN


def test_non_dict_payload_becomes_empty():
    task = parse_task(json.dumps({"requestId": "r", "taskType": "LOGIN_CHECK", "payload": [1, 2]}))

    assert dict(task.payload) == {}


def test_payload_is_read_only():
    task = parse_task(json.dumps({"requestId": "r", "taskType": "LOGIN_CHECK", "payload": {"a": 1}}))

    with pytest.raises(TypeError):
        task.payload["a"] = 2


@pytest.mark.parametrize(
    "raw",
    ["{not json", json.dumps("str"), json.dumps({"taskType": "LOGIN_CHECK"}), json.dumps({"requestId": 5})],
)
def test_invalid_messages_raise(raw):
    with pytest.raises(TaskParseError):
        parse_task(raw)
