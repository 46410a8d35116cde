from __future__ import annotations

from datetime import date

import orjson
import pytest

from daylist.sync.errors import ProtocolError
from daylist.sync.models import (
    Priority,
    Status,
    Task,
    canonical_dumps,
    decode_collection,
    parse_record_key,
    record_key,
)


def test_record_key_is_day_scoped() -> None:
    assert record_key(date(2025, 1, 1)) == "todos-20250101"
    assert parse_record_key("todos-20250101") == date(2025, 1, 1)


@pytest.mark.parametrize("key", ["todos-2025011", "other-20250101", "todos-20251301"])
def test_parse_record_key_rejects_foreign_keys(key: str) -> None:
    assert parse_record_key(key) is None


def test_created_tasks_get_unique_ids() -> None:
    tasks = [Task.create("same", "low", created=1) for _ in range(50)]
    assert len({task.id for task in tasks}) == 50
    assert tasks[0].status is Status.NOT_SET
    assert tasks[0].priority is Priority.LOW


def test_decode_drops_duplicates_and_deleted_records() -> None:
    raw = orjson.dumps(
        [
            {"id": "a", "text": "first", "priority": "high", "status": "done", "created": 1},
            {"id": "a", "text": "again", "priority": "low", "status": "not set", "created": 2},
            {"id": "b", "text": "gone", "isDeleted": True},
        ]
    )

    collection = decode_collection(raw)

    assert len(collection) == 1
    assert collection[0].text == "first"
    assert collection[0].priority is Priority.HIGH


@pytest.mark.parametrize("raw", [None, "", "null"])
def test_empty_values_decode_to_empty_collection(raw: str | None) -> None:
    assert decode_collection(raw) == ()


@pytest.mark.parametrize(
    "raw",
    [
        "{}",
        "not json",
        "[1]",
        '[{"text": "no id"}]',
        '[{"id": "x", "text": "t", "priority": "urgent"}]',
    ],
)
def test_malformed_collections_raise(raw: str) -> None:
    with pytest.raises(ProtocolError):
        decode_collection(raw)


def test_canonical_dumps_sorts_fields() -> None:
    task = Task(id="a", text="t", priority=Priority.LOW, status=Status.DONE, created=5)
    assert canonical_dumps((task,)) == (
        '[{"created":5,"id":"a","priority":"low","status":"done","text":"t"}]'
    )


def test_status_toggles() -> None:
    assert Status.NOT_SET.toggled() is Status.DONE
    assert Status.DONE.toggled() is Status.NOT_SET
