"""Interactive terminal client: ``python -m daylist``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading
from contextlib import suppress

from daylist.settings import settings
from daylist.sync.days import offset_day
from daylist.sync.engine import SyncEngine
from daylist.sync.errors import ChannelError
from daylist.sync.models import Priority
from daylist.sync.pulse import SessionDisconnected
from daylist.sync.render import ConsoleRenderer

logger = logging.getLogger(__name__)

HELP = """Commands:
  add [high|low] TEXT   add a task to the active day
  done N                toggle task N
  rm N                  delete task N
  day OFFSET            switch day (0 today, -1 yesterday, 1 tomorrow, ...)
  ls                    show the active day again
  quit                  disconnect and exit"""


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="daylist", description=__doc__)
    parser.add_argument("--api-key", help="store API key (default: REMOTE.api_key)")
    parser.add_argument("--endpoint", help="store host[:port] (default: REMOTE.endpoint)")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="use ws:// and http:// instead of wss:// and https://",
    )
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL")
    return parser.parse_args(argv)


def _task_number(renderer: ConsoleRenderer, raw: str) -> str | None:
    try:
        task = renderer.task_at(int(raw))
    except ValueError:
        task = None
    if task is None:
        print(f"No task {raw!r}")
        return None
    return task.id


def _dispatch(engine: SyncEngine, renderer: ConsoleRenderer, line: str) -> bool:
    command, _, rest = line.strip().partition(" ")
    rest = rest.strip()
    if not command:
        return True
    if command in {"quit", "exit"}:
        return False
    if command == "add":
        priority: Priority | None = None
        first, _, remainder = rest.partition(" ")
        if first in {p.value for p in Priority}:
            priority, rest = Priority(first), remainder
        try:
            engine.add(rest, priority)
        except ValueError as exc:
            print(exc)
    elif command == "done":
        task_id = _task_number(renderer, rest)
        if task_id:
            engine.toggle(task_id)
    elif command == "rm":
        task_id = _task_number(renderer, rest)
        if task_id:
            engine.delete(task_id)
    elif command == "day":
        try:
            offset = int(rest or "0")
        except ValueError:
            print("day expects an integer offset")
            return True
        day = offset_day(engine.session.today(), offset)
        print(f"-- {day:%A %d %B %Y}")
        engine.activate_day(day)
    elif command == "ls":
        renderer.render(engine.tasks(), False)
    else:
        print(HELP)
    return True


class _StdinReader:
    """Read console lines on a daemon thread and hand them to the event loop.

    The thread only prompts once :meth:`readline` asks for a line. It never
    holds up interpreter shutdown while blocked in ``input``.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, prompt: str = "> ") -> None:
        self._loop = loop
        self._prompt = prompt
        self._lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._wanted = threading.Event()
        self._thread = threading.Thread(
            target=self._pump, name="daylist-stdin", daemon=True
        )

    @property
    def daemon(self) -> bool:
        return self._thread.daemon

    def start(self) -> None:
        self._thread.start()

    async def readline(self) -> str | None:
        """Next line typed by the user, or ``None`` at end of input."""

        self._wanted.set()
        return await self._lines.get()

    def _pump(self) -> None:
        while True:
            self._wanted.wait()
            self._wanted.clear()
            try:
                line: str | None = input(self._prompt)
            except EOFError:
                line = None
            try:
                self._loop.call_soon_threadsafe(self._lines.put_nowait, line)
            except RuntimeError:
                # Event loop already closed.
                return
            if line is None:
                return


async def _run(args: argparse.Namespace) -> int:
    if args.insecure:
        settings.set("REMOTE.secure", False)
    renderer = ConsoleRenderer()
    try:
        engine = SyncEngine.from_settings(
            settings, api_key=args.api_key, endpoint=args.endpoint, renderer=renderer
        )
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 2

    lost = asyncio.Event()

    def _on_disconnected(event: SessionDisconnected) -> None:
        print(f"\nConnection closed: {event.reason}. Please reconnect.")
        lost.set()

    engine.pulse.connect(SessionDisconnected, _on_disconnected)

    try:
        await engine.connect()
    except ChannelError as exc:
        print(f"Failed to connect: {exc}", file=sys.stderr)
        await engine.aclose()
        return 1

    print(HELP)
    reader = _StdinReader(asyncio.get_running_loop())
    reader.start()
    try:
        while True:
            prompt = asyncio.create_task(reader.readline())
            waiter = asyncio.create_task(lost.wait())
            done, _ = await asyncio.wait(
                {prompt, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if waiter in done:
                prompt.cancel()
                return 1
            waiter.cancel()
            line = prompt.result()
            if line is None:
                return 0
            try:
                if not _dispatch(engine, renderer, line):
                    return 0
            except ChannelError as exc:
                print(f"Not connected: {exc}")
                return 1
    finally:
        with suppress(ChannelError):
            await engine.aclose()


def main(argv: list[str] | None = None) -> None:
    """Run the interactive client with configuration overrides."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=(args.log_level or settings.get("LOG_LEVEL") or "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
