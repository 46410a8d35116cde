"""Reconciliation engine for one day-scoped task list session.

Control flow::

    user action -> MutationPipeline -> cache (optimistic) -> INSERT on the
    command channel (tagged by the correlator) -> debounce gate opens

    notification / GET reply -> echo check (correlator + gate) -> decode ->
    cache diff -> replace + render when changed and the key is active

Everything after the channels is synchronous and runs to completion on the
event loop, so cache updates never interleave.
"""

from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from typing import Any, Sequence

from daylist.sync.channel import CommandChannel, Connector, websocket_connector
from daylist.sync.config import SyncConfig
from daylist.sync.correlator import SentRecord
from daylist.sync.days import is_past, visible_days
from daylist.sync.errors import (
    ChannelError,
    Conflict,
    NotFound,
    ProtocolError,
    SyncError,
    TokenAcquisitionFailure,
)
from daylist.sync.models import (
    Collection,
    Priority,
    Task,
    canonical_dumps,
    decode_collection,
    record_key,
)
from daylist.sync.mutations import MutationPipeline
from daylist.sync.protocol import (
    Notification,
    Op,
    OutboundMessage,
    Response,
    decode_inbound,
)
from daylist.sync.pulse import (
    DayRefreshed,
    SessionDisconnected,
    SessionStateChanged,
    SyncPulse,
)
from daylist.sync.render import NullRenderer, Renderer
from daylist.sync.session import SessionContext
from daylist.sync.subscription import SubscriptionManager
from daylist.sync.tokens import TokenClient

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SyncEngine:
    """Keep the active day's collection in step with the remote store."""

    def __init__(
        self,
        config: SyncConfig,
        *,
        session: SessionContext | None = None,
        renderer: Renderer | None = None,
        pulse: SyncPulse | None = None,
        connector: Connector | None = None,
        token_client: TokenClient | None = None,
    ) -> None:
        self.config = config
        self.session = session or SessionContext.create(
            debounce_ms=config.debounce_ms,
            sent_id_capacity=config.sent_id_capacity,
        )
        self.pulse = pulse or SyncPulse()
        self._renderer: Renderer = renderer or NullRenderer()
        self._connector = connector or websocket_connector(
            open_timeout=config.remote.timeout
        )
        self._tokens = token_client or TokenClient(
            config.remote.http_base_url,
            config.remote.api_key,
            token_path=config.remote.token_path,
            timeout=config.remote.timeout,
        )
        self.subscriptions = SubscriptionManager(
            token_client=self._tokens,
            ws_url=config.remote.ws_url,
            on_notification=self.handle_notification,
            connector=self._connector,
            pulse=self.pulse,
        )
        self._pipeline = MutationPipeline(
            self.session,
            send=self._send,
            on_applied=self._on_local_applied,
            max_text_length=config.max_text_length,
        )
        self._command: CommandChannel | None = None
        self._conflicts: dict[str, Collection] = {}
        self._state = EngineState.DISCONNECTED

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        *,
        api_key: str | None = None,
        endpoint: str | None = None,
        **kwargs: Any,
    ) -> "SyncEngine":
        config = SyncConfig.from_settings(settings, api_key=api_key, endpoint=endpoint)
        return cls(config, **kwargs)

    async def __aenter__(self) -> "SyncEngine":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Lifecycle

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is EngineState.CONNECTED

    async def connect(self) -> None:
        """Open the command channel, subscribe to the visible days, load today.

        Raises :class:`ChannelError` when the store is unreachable. A failed
        subscription is logged and the session continues without push
        updates.
        """

        if self._state is not EngineState.DISCONNECTED:
            raise ChannelError(f"Engine is already {self._state.value}")
        self._set_state(EngineState.CONNECTING)
        self.session.reset()
        channel = CommandChannel(
            self.config.remote.command_url,
            correlator=self.session.correlator,
            clock=self.session.clock,
            on_message=self._handle_command_frame,
            on_close=self._handle_command_lost,
            connector=self._connector,
        )
        try:
            await channel.open()
        except ChannelError:
            self._set_state(EngineState.DISCONNECTED)
            raise
        self._command = channel
        self._set_state(EngineState.CONNECTED)

        await self.refresh_subscription()
        if self.is_connected:
            self.activate_day(self.session.today())

    async def refresh_subscription(self) -> None:
        """Subscribe to the window of days around today, replacing any old one."""

        today = self.session.today()
        keys = [
            record_key(day, self.config.key_prefix)
            for day in visible_days(
                today, past=self.config.days_past, future=self.config.days_future
            )
        ]
        try:
            await self.subscriptions.subscribe(keys)
        except (TokenAcquisitionFailure, ChannelError) as exc:
            logger.error("Push updates unavailable: %s", exc)

    async def disconnect(self) -> None:
        await self._teardown(reason=None)

    async def aclose(self) -> None:
        await self.disconnect()
        await self._tokens.aclose()

    async def _handle_command_lost(self, exc: ChannelError) -> None:
        logger.error("Connection to store lost: %s", exc)
        await self._teardown(reason=exc)

    async def _teardown(self, *, reason: ChannelError | None) -> None:
        command, self._command = self._command, None
        if command is not None:
            await command.close()
        await self.subscriptions.close()
        self._conflicts.clear()
        self.session.reset()
        if self._state is not EngineState.DISCONNECTED:
            self._set_state(EngineState.DISCONNECTED)
        if reason is not None:
            self.pulse.emit(SessionDisconnected(reason=str(reason)))

    def _set_state(self, state: EngineState) -> None:
        self._state = state
        self.pulse.emit(SessionStateChanged(state=state.value))

    # ------------------------------------------------------------------
    # Active day and user operations

    @property
    def active_key(self) -> str | None:
        return self.session.active_key

    def tasks(self) -> Collection:
        key = self.session.active_key
        if key is None:
            return ()
        return self.session.cache.get(key) or ()

    def activate_day(self, day: date) -> str:
        """Make ``day`` the displayed collection and request its current value."""

        key = record_key(day, self.config.key_prefix)
        self.session.active_day = day
        self.session.active_key = key
        cached = self.session.cache.get(key)
        if cached is not None:
            self._render(key, cached, changed=False)
        self._send(Op.GET, key)
        logger.debug("Activated %s", key)
        return key

    def add(self, text: str, priority: Priority | str | None = None) -> Task:
        key = self._require_active()
        day = self.session.active_day
        if day is not None and is_past(day, self.session.today()):
            raise ValueError(f"Cannot add tasks to past day {day.isoformat()}")
        return self._pipeline.add(key, text, priority or self.config.default_priority)

    def toggle(self, task_id: str) -> Task | None:
        return self._pipeline.toggle(self._require_active(), task_id)

    def delete(self, task_id: str) -> Task | None:
        return self._pipeline.delete(self._require_active(), task_id)

    def _require_active(self) -> str:
        key = self.session.active_key
        if key is None:
            raise ValueError("No day is active")
        return key

    def _send(self, op: Op, key: str, value: str = "") -> OutboundMessage:
        if self._command is None:
            raise ChannelError("Not connected to the store")
        return self._command.send(op, key, value)

    def _on_local_applied(self, key: str, collection: Collection) -> None:
        if key == self.session.active_key:
            self._render(key, collection, changed=True)

    def _render(self, key: str, collection: Sequence[Task], *, changed: bool) -> None:
        self._renderer.render(collection, changed)
        self.pulse.emit(DayRefreshed(key=key, count=len(collection), changed=changed))

    # ------------------------------------------------------------------
    # Inbound traffic

    def _handle_command_frame(self, raw: str | bytes) -> None:
        try:
            inbound = decode_inbound(raw)
        except ProtocolError as exc:
            logger.warning("Dropping malformed frame: %s", exc)
            return
        if isinstance(inbound, Notification):
            self.handle_notification(inbound)
        else:
            self.handle_response(inbound)

    def handle_notification(self, notification: Notification) -> bool:
        return self._apply_remote(
            notification.key, notification.value, notification.message_id
        )

    def handle_response(self, response: Response) -> bool:
        """Apply a reply from the command channel; return whether it re-rendered."""

        sent = self.session.correlator.lookup(response.message_id)
        op = sent.op if sent is not None else None
        key = response.key or (sent.key if sent is not None else None)
        if not key:
            logger.warning("Reply %s carries no key; ignoring", response.message_id)
            return False

        try:
            response.raise_for_code()
        except NotFound:
            if op is Op.GET:
                if key in self._conflicts:
                    self._resolve_conflict(key, None)
                    return True
                return self._apply_remote(key, None, response.message_id)
            logger.warning("Store reports %s missing for %s", key, op.name if op else "reply")
            return False
        except Conflict:
            if sent is not None and op is not None and op.is_write:
                self._retry_after_conflict(key, sent)
            else:
                logger.warning("Unexpected conflict reply for %s", key)
            return False
        except SyncError as exc:
            logger.error("%s failed: %s", op.name if op else "Request", exc)
            return False

        if op is Op.GET:
            if key in self._conflicts:
                self._resolve_conflict(key, response.value)
                return True
            return self._apply_remote(key, response.value, response.message_id)
        if op is None and response.value is not None:
            return self._apply_remote(key, response.value, response.message_id)
        logger.debug("Store acknowledged %s %s", op.name if op else "reply", key)
        return False

    def _apply_remote(self, key: str, value: str | None, message_id: int | None) -> bool:
        if self.session.is_echo(message_id, key):
            logger.debug("Suppressing echo of message %s for %s", message_id, key)
            return False
        try:
            incoming = decode_collection(value)
        except ProtocolError as exc:
            logger.warning("Dropping malformed value for %s: %s", key, exc)
            return False
        if not self.session.cache.diff(key, incoming):
            logger.debug("No change for %s", key)
            return False
        self.session.cache.put(key, incoming)
        if key != self.session.active_key:
            logger.debug("Cached update for inactive %s", key)
            return False
        self._render(key, incoming, changed=True)
        return True

    def _retry_after_conflict(self, key: str, sent: SentRecord) -> None:
        try:
            attempted = decode_collection(sent.value)
        except ProtocolError:
            attempted = ()
        self._conflicts[key] = attempted
        logger.warning("Write to %s conflicted; re-reading before retrying", key)
        self._send(Op.GET, key)

    def _resolve_conflict(self, key: str, remote_value: str | None) -> None:
        attempted = self._conflicts.pop(key)
        try:
            remote = decode_collection(remote_value)
        except ProtocolError as exc:
            logger.warning("Remote value for %s unreadable during retry: %s", key, exc)
            remote = ()
        known = {task.id for task in remote}
        merged = remote + tuple(task for task in attempted if task.id not in known)
        op = Op.UPDATE if remote_value is not None else Op.INSERT
        self._send(op, key, canonical_dumps(merged))
        self.session.cache.put(key, merged)
        self.session.gate.mark_local_mutation(self.session.now(), key)
        logger.info("Retried write to %s with %d tasks", key, len(merged))
        if key == self.session.active_key:
            self._render(key, merged, changed=True)


__all__ = ["EngineState", "SyncEngine"]
