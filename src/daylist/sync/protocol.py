"""Wire messages exchanged with the key-value store.

Requests on the command channel::

    {"op": 1|2|3|4, "key": str, "value": str, "timestamp": epoch-ms, "messageId": int}

Replies carry ``code`` (200 ok, 404 absent, 409 conflict, anything else is an
error described by ``error``). The notification channel only ever delivers
``{"type": "notification", "key": str, "value": str}``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

import orjson

from daylist.sync.errors import Conflict, NotFound, ProtocolError, SyncError

CODE_OK = 200
CODE_NOT_FOUND = 404
CODE_CONFLICT = 409


class Op(IntEnum):
    GET = 1
    INSERT = 2
    UPDATE = 3
    DELETE = 4

    @property
    def is_write(self) -> bool:
        return self is not Op.GET


@dataclass(slots=True)
class OutboundMessage:
    op: Op
    key: str
    value: str = ""
    timestamp: int = 0
    message_id: int | None = None

    def to_wire(self) -> dict[str, Any]:
        if self.message_id is None:
            raise ValueError("Outbound message has not been tagged")
        return {
            "op": int(self.op),
            "key": self.key,
            "value": self.value,
            "timestamp": self.timestamp,
            "messageId": self.message_id,
        }


@dataclass(slots=True, frozen=True)
class Response:
    code: int
    key: str | None
    value: str | None = None
    message_id: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.code == CODE_OK

    def raise_for_code(self) -> None:
        """Raise the matching :mod:`errors` type for a non-200 reply."""

        if self.code == CODE_OK:
            return
        key = self.key or ""
        if self.code == CODE_NOT_FOUND:
            raise NotFound(key)
        if self.code == CODE_CONFLICT:
            raise Conflict(key)
        raise SyncError(f"Store returned {self.code} for {key!r}: {self.error or 'no detail'}")


@dataclass(slots=True, frozen=True)
class Notification:
    key: str
    value: str | None
    message_id: int | None = None


Inbound = Response | Notification


def encode_message(message: OutboundMessage) -> str:
    return orjson.dumps(message.to_wire()).decode()


def _optional_int(value: Any, field: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ProtocolError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"{field} must be an integer, got {value!r}") from exc


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    # Some stores echo structured values back; keep the wire form.
    return orjson.dumps(value).decode()


def decode_inbound(raw: str | bytes) -> Inbound:
    """Parse a raw frame into a :class:`Response` or :class:`Notification`."""

    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise ProtocolError(f"Inbound frame is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError(
            f"Inbound frame must be an object, got {type(payload).__name__}"
        )

    message_id = _optional_int(payload.get("messageId"), "messageId")
    key = payload.get("key")
    if key is not None and not isinstance(key, str):
        raise ProtocolError("key must be a string")

    if payload.get("type") == "notification":
        if not key:
            raise ProtocolError("Notification without key")
        return Notification(
            key=key,
            value=_optional_text(payload.get("value")),
            message_id=message_id,
        )

    code = _optional_int(payload.get("code"), "code")
    if code is None:
        raise ProtocolError("Frame is neither a notification nor a reply")
    error = payload.get("error")
    return Response(
        code=code,
        key=key,
        value=_optional_text(payload.get("value")),
        message_id=message_id,
        error=str(error) if error is not None else None,
    )


__all__ = [
    "CODE_CONFLICT",
    "CODE_NOT_FOUND",
    "CODE_OK",
    "Inbound",
    "Notification",
    "Op",
    "OutboundMessage",
    "Response",
    "decode_inbound",
    "encode_message",
]
