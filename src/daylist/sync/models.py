"""Task and collection types plus their canonical serialization."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Iterable

import orjson
from ulid import ULID

from daylist.sync.errors import ProtocolError

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "todos-"


class Priority(str, Enum):
    LOW = "low"
    HIGH = "high"


class Status(str, Enum):
    NOT_SET = "not set"
    DONE = "done"

    def toggled(self) -> "Status":
        return Status.NOT_SET if self is Status.DONE else Status.DONE


@dataclass(slots=True, frozen=True)
class Task:
    """A single entry of a day's collection."""

    id: str
    text: str
    priority: Priority
    status: Status
    created: int

    @classmethod
    def create(cls, text: str, priority: Priority | str, *, created: int) -> "Task":
        """Build a new task with a time-ordered, collision-resistant id."""

        return cls(
            id=str(ULID()),
            text=text,
            priority=Priority(priority),
            status=Status.NOT_SET,
            created=int(created),
        )

    @classmethod
    def from_dict(cls, data: Any) -> "Task":
        if not isinstance(data, dict):
            raise ProtocolError(f"Task must be an object, got {type(data).__name__}")
        raw_id = data.get("id")
        text = data.get("text")
        if raw_id is None or str(raw_id) == "":
            raise ProtocolError("Task is missing an id")
        if not isinstance(text, str):
            raise ProtocolError(f"Task {raw_id!r} has no text")
        try:
            priority = Priority(data.get("priority") or Priority.LOW.value)
            status = Status(data.get("status") or Status.NOT_SET.value)
            created = int(data.get("created") or 0)
        except (TypeError, ValueError) as exc:
            raise ProtocolError(f"Task {raw_id!r} is malformed: {exc}") from exc
        return cls(
            id=str(raw_id),
            text=text,
            priority=priority,
            status=status,
            created=created,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "priority": self.priority.value,
            "status": self.status.value,
            "created": self.created,
        }

    def with_status(self, status: Status) -> "Task":
        return replace(self, status=status)


Collection = tuple[Task, ...]


def canonical_dumps(collection: Iterable[Task]) -> str:
    """Serialize ``collection`` with a deterministic field order."""

    payload = [task.to_dict() for task in collection]
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS).decode()


def decode_collection(raw: str | bytes | None) -> Collection:
    """Decode a stored value into a collection.

    ``None`` and empty values decode to an empty collection. Legacy per-item
    records flagged ``isDeleted`` are dropped, and duplicate ids keep their
    first occurrence.
    """

    if raw is None or raw == "" or raw == b"":
        return ()
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise ProtocolError(f"Collection is not valid JSON: {exc}") from exc
    if payload is None:
        return ()
    if not isinstance(payload, list):
        raise ProtocolError(
            f"Collection must be a list, got {type(payload).__name__}"
        )

    tasks: list[Task] = []
    seen: set[str] = set()
    for item in payload:
        if isinstance(item, dict) and item.get("isDeleted"):
            continue
        task = Task.from_dict(item)
        if task.id in seen:
            logger.warning("Dropping duplicate task id %s", task.id)
            continue
        seen.add(task.id)
        tasks.append(task)
    return tuple(tasks)


def canonicalize(raw: str | bytes | None) -> str:
    return canonical_dumps(decode_collection(raw))


def record_key(day: date, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Return the store key holding the collection for ``day``."""

    return f"{prefix}{day:%Y%m%d}"


def parse_record_key(key: str, prefix: str = DEFAULT_KEY_PREFIX) -> date | None:
    if not key.startswith(prefix):
        return None
    stamp = key[len(prefix) :]
    if len(stamp) != 8 or not stamp.isdigit():
        return None
    try:
        return date(int(stamp[:4]), int(stamp[4:6]), int(stamp[6:]))
    except ValueError:
        return None


def find_task(collection: Collection, task_id: str) -> int | None:
    for index, task in enumerate(collection):
        if task.id == task_id:
            return index
    return None


__all__ = [
    "Collection",
    "Priority",
    "Status",
    "Task",
    "canonical_dumps",
    "canonicalize",
    "decode_collection",
    "find_task",
    "parse_record_key",
    "record_key",
]
