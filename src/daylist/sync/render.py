"""Presentation seam between the sync engine and whatever draws tasks."""

from __future__ import annotations

from typing import Callable, Protocol, Sequence

from daylist.sync.models import Priority, Status, Task


class Renderer(Protocol):
    def render(self, tasks: Sequence[Task], changed: bool) -> None: ...


def display_order(task: Task) -> tuple[int, int, int, str]:
    return (
        1 if task.status is Status.DONE else 0,
        0 if task.priority is Priority.HIGH else 1,
        task.created,
        task.id,
    )


def sort_for_display(tasks: Sequence[Task]) -> list[Task]:
    """Open tasks first, high priority before low, then oldest first."""

    return sorted(tasks, key=display_order)


class NullRenderer:
    def render(self, tasks: Sequence[Task], changed: bool) -> None:
        return None


class ConsoleRenderer:
    """Print the active day as a numbered list.

    The numbering matches :attr:`visible`, which the CLI uses to map
    ``done 2`` back to a task id.
    """

    def __init__(self, write: Callable[[str], None] = print) -> None:
        self._write = write
        self.visible: list[Task] = []

    def render(self, tasks: Sequence[Task], changed: bool) -> None:
        self.visible = sort_for_display(tasks)
        if not self.visible:
            self._write("  (no tasks)")
            return
        for number, task in enumerate(self.visible, start=1):
            mark = "x" if task.status is Status.DONE else " "
            badge = "!" if task.priority is Priority.HIGH else " "
            self._write(f"{number:>3}. [{mark}] {badge} {task.text}")

    def task_at(self, number: int) -> Task | None:
        if 1 <= number <= len(self.visible):
            return self.visible[number - 1]
        return None


__all__ = [
    "ConsoleRenderer",
    "NullRenderer",
    "Renderer",
    "display_order",
    "sort_for_display",
]
