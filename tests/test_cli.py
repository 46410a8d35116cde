from __future__ import annotations

import asyncio
import threading

from conftest import settle
from daylist.__main__ import _dispatch, _StdinReader
from daylist.sync.models import Priority, Status
from daylist.sync.render import ConsoleRenderer


def test_interactive_commands_drive_the_engine(make_harness) -> None:
    async def scenario() -> None:
        harness = make_harness()
        await harness.start()
        renderer = ConsoleRenderer(lambda line: None)
        engine = harness.engine

        assert _dispatch(engine, renderer, "add high call mom")
        (task,) = engine.tasks()
        assert task.text == "call mom"
        assert task.priority is Priority.HIGH

        renderer.render(engine.tasks(), False)
        assert _dispatch(engine, renderer, "done 1")
        assert engine.tasks()[0].status is Status.DONE

        assert _dispatch(engine, renderer, "rm 1")
        assert engine.tasks() == ()

        assert _dispatch(engine, renderer, "day 1")
        assert engine.active_key == "todos-20250102"

        assert _dispatch(engine, renderer, "quit") is False
        await settle()

    asyncio.run(scenario())


def test_unknown_task_number_is_reported(make_harness, capsys) -> None:
    async def scenario() -> None:
        harness = make_harness()
        await harness.start()
        renderer = ConsoleRenderer(lambda line: None)

        assert _dispatch(harness.engine, renderer, "done 4")

    asyncio.run(scenario())
    assert "No task '4'" in capsys.readouterr().out


def test_stdin_reader_hands_lines_to_the_loop(monkeypatch) -> None:
    answers = iter(["add tea", "quit"])

    def _input(prompt: str = "") -> str:
        try:
            return next(answers)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", _input)

    async def scenario() -> list[str | None]:
        reader = _StdinReader(asyncio.get_running_loop())
        reader.start()
        return [await reader.readline() for _ in range(3)]

    assert asyncio.run(scenario()) == ["add tea", "quit", None]


def test_blocked_stdin_reader_does_not_hold_up_shutdown(monkeypatch) -> None:
    release = threading.Event()

    def _input(prompt: str = "") -> str:
        release.wait()
        raise EOFError

    monkeypatch.setattr("builtins.input", _input)

    async def scenario() -> bool:
        reader = _StdinReader(asyncio.get_running_loop())
        reader.start()
        pending = asyncio.create_task(reader.readline())
        await asyncio.sleep(0.01)
        pending.cancel()
        return reader.daemon

    try:
        assert asyncio.run(scenario()) is True
    finally:
        release.set()
