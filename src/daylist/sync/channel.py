"""WebSocket channels to the key-value store.

Both channels follow the same lifecycle: :meth:`DuplexChannel.open` connects,
a reader task hands every frame to a synchronous ``on_message`` callback, and
an unexpected end of the stream is reported once through ``on_close``. There
is no reconnect loop; a closed channel stays closed.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import AsyncIterator, Awaitable, Callable, Protocol

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from daylist.sync.correlator import MessageCorrelator
from daylist.sync.errors import ChannelError
from daylist.sync.protocol import Op, OutboundMessage, encode_message

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Minimal surface of a client WebSocket connection."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[Connection]]
MessageHandler = Callable[[str | bytes], None]
CloseHandler = Callable[[ChannelError], Awaitable[None]]


def websocket_connector(*, open_timeout: float | None = 10.0) -> Connector:
    async def _connect(url: str) -> Connection:
        return await ws_connect(url, open_timeout=open_timeout)

    return _connect


def _redact(url: str) -> str:
    base, _, query = url.partition("?")
    return f"{base}?…" if query else base


class DuplexChannel:
    """Own a single connection plus the reader task draining it."""

    name = "channel"

    def __init__(
        self,
        url: str,
        *,
        on_message: MessageHandler,
        on_close: CloseHandler | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._url = url
        self._on_message = on_message
        self._on_close = on_close
        self._connector = connector or websocket_connector()
        self._connection: Connection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._closing = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._connection is not None and not self._closing

    async def open(self) -> None:
        if self._connection is not None:
            raise ChannelError(f"{self.name} already opened")
        logger.debug("Opening %s to %s", self.name, _redact(self._url))
        try:
            self._connection = await self._connector(self._url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise ChannelError(f"Unable to open {self.name}: {exc}") from exc
        self._closing = False
        self._reader = asyncio.create_task(self._read_loop())
        self._started()
        logger.info("%s connected", self.name)

    def _started(self) -> None:
        """Hook for subclasses that run extra tasks alongside the reader."""

    async def _read_loop(self) -> None:
        connection = self._connection
        assert connection is not None
        reason: ChannelError
        try:
            async for raw in connection:
                try:
                    self._on_message(raw)
                except Exception:
                    logger.exception("%s handler failed for frame", self.name)
            reason = ChannelError(f"{self.name} closed by remote")
        except asyncio.CancelledError:
            raise
        except (OSError, WebSocketException) as exc:
            reason = ChannelError(f"{self.name} failed: {exc}")

        if self._closing:
            return
        self._closing = True
        logger.warning("%s", reason)
        await self._shutdown(cancel_reader=False)
        if self._on_close is not None:
            await self._on_close(reason)

    async def close(self) -> None:
        """Close the connection and cancel outstanding work for it."""

        if self._connection is None or self._closed:
            return
        self._closing = True
        await self._shutdown(cancel_reader=True)
        logger.debug("%s closed", self.name)

    async def _shutdown(self, *, cancel_reader: bool) -> None:
        reader = self._reader
        if cancel_reader and reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader
        self._closed = True
        self._stopped()
        connection = self._connection
        if connection is not None:
            with suppress(OSError, WebSocketException):
                await connection.close()

    def _stopped(self) -> None:
        """Hook for subclasses to cancel their extra tasks."""


class CommandChannel(DuplexChannel):
    """Request/response channel for GET and write operations.

    Sends are fire-and-forget: :meth:`send` tags and queues the message
    synchronously, a writer task flushes the queue in order.
    """

    name = "command channel"

    def __init__(
        self,
        url: str,
        *,
        correlator: MessageCorrelator,
        clock: Callable[[], int],
        on_message: MessageHandler,
        on_close: CloseHandler | None = None,
        connector: Connector | None = None,
    ) -> None:
        super().__init__(
            url, on_message=on_message, on_close=on_close, connector=connector
        )
        self._correlator = correlator
        self._clock = clock
        self._outbox: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None

    def send(self, op: Op, key: str, value: str = "") -> OutboundMessage:
        if not self.is_open:
            raise ChannelError(f"{self.name} is not open")
        message = OutboundMessage(op=op, key=key, value=value, timestamp=self._clock())
        self._correlator.tag(message)
        self._correlator.record_sent(message)
        self._outbox.put_nowait(message)
        logger.debug("Queued %s %s (messageId=%s)", op.name, key, message.message_id)
        return message

    def _started(self) -> None:
        self._writer = asyncio.create_task(self._write_loop())

    def _stopped(self) -> None:
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
        while not self._outbox.empty():
            dropped = self._outbox.get_nowait()
            logger.debug("Dropping unsent %s %s", dropped.op.name, dropped.key)

    async def _write_loop(self) -> None:
        connection = self._connection
        assert connection is not None
        while True:
            message = await self._outbox.get()
            try:
                await connection.send(encode_message(message))
            except (OSError, WebSocketException) as exc:
                # The reader sees the same failure and reports the close.
                logger.error(
                    "Failed to send %s %s (messageId=%s): %s",
                    message.op.name,
                    message.key,
                    message.message_id,
                    exc,
                )
                return


class NotificationChannel(DuplexChannel):
    """Receive-only channel carrying change notifications."""

    name = "notification channel"


__all__ = [
    "CommandChannel",
    "Connection",
    "Connector",
    "DuplexChannel",
    "NotificationChannel",
    "websocket_connector",
]