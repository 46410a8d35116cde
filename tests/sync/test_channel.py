from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClock, FakeConnector, settle
from daylist.sync.channel import CommandChannel, NotificationChannel
from daylist.sync.correlator import MessageCorrelator
from daylist.sync.errors import ChannelError
from daylist.sync.protocol import Op


def _command_channel(connector: FakeConnector, received: list, closes: list) -> CommandChannel:
    async def _on_close(exc: ChannelError) -> None:
        closes.append(exc)

    return CommandChannel(
        "wss://store.test/ws?apiKey=k",
        correlator=MessageCorrelator(),
        clock=FakeClock(),
        on_message=received.append,
        on_close=_on_close,
        connector=connector,
    )


def test_send_before_open_raises() -> None:
    channel = _command_channel(FakeConnector(), [], [])
    with pytest.raises(ChannelError):
        channel.send(Op.GET, "k")


def test_sends_are_flushed_in_order() -> None:
    async def scenario() -> None:
        connector = FakeConnector()
        channel = _command_channel(connector, [], [])
        await channel.open()

        first = channel.send(Op.GET, "a")
        second = channel.send(Op.INSERT, "a", "[]")
        await settle()

        sent = connector.connections[0].sent
        assert [msg["messageId"] for msg in sent] == [first.message_id, second.message_id]
        assert [msg["op"] for msg in sent] == [1, 2]
        assert sent[0]["timestamp"] == FakeClock().now
        await channel.close()

    asyncio.run(scenario())


def test_remote_hang_up_reports_close_once() -> None:
    async def scenario() -> None:
        connector = FakeConnector()
        received: list = []
        closes: list[ChannelError] = []
        channel = _command_channel(connector, received, closes)
        await channel.open()

        connection = connector.connections[0]
        connection.push({"code": 200, "key": "a"})
        connection.hang_up()
        await settle()
        await channel.close()

        assert len(received) == 1
        assert len(closes) == 1
        assert not channel.is_open
        with pytest.raises(ChannelError):
            channel.send(Op.GET, "a")

    asyncio.run(scenario())


def test_transport_failure_is_reported_as_channel_error() -> None:
    async def scenario() -> None:
        connector = FakeConnector()
        closes: list[ChannelError] = []
        channel = _command_channel(connector, [], closes)
        await channel.open()

        connector.connections[0].fail()
        await settle()

        assert len(closes) == 1
        assert "connection reset" in str(closes[0])

    asyncio.run(scenario())


def test_explicit_close_does_not_report() -> None:
    async def scenario() -> None:
        connector = FakeConnector()
        closes: list[ChannelError] = []
        channel = _command_channel(connector, [], closes)
        await channel.open()

        await channel.close()
        await settle()

        assert closes == []
        assert connector.connections[0].closed

    asyncio.run(scenario())


def test_handler_failure_keeps_reader_alive() -> None:
    async def scenario() -> None:
        connector = FakeConnector()
        seen: list[str] = []

        def _handler(raw: str | bytes) -> None:
            if raw == "boom":
                raise RuntimeError("handler bug")
            seen.append(str(raw))

        channel = NotificationChannel(
            "wss://store.test/ws?token=t", on_message=_handler, connector=connector
        )
        await channel.open()
        connector.connections[0].push("boom")
        connector.connections[0].push("fine")
        await settle()

        assert seen == ["fine"]
        assert channel.is_open
        await channel.close()

    asyncio.run(scenario())


def test_unreachable_store_raises_channel_error() -> None:
    async def scenario() -> None:
        connector = FakeConnector()
        connector.unreachable = True
        channel = _command_channel(connector, [], [])

        with pytest.raises(ChannelError):
            await channel.open()

    asyncio.run(scenario())
