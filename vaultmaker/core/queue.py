from __future__ import annotations

import threading
from typing import Iterable

from vaultmaker.core.events import EventBus
from vaultmaker.core.stages import Stage
from vaultmaker.core.tasks import Task


class TaskQueue:
    """FIFO of pending tasks with stage-selective dequeue.

    One consumer (the scheduler) and several producers (stage population, the
    source tracker); every mutation holds the lock and then notifies the bus.
    """

    def __init__(self, events: EventBus | None = None):
        self._tasks: list[Task] = []
        self._lock = threading.RLock()
        self._events = events or EventBus()

    def enqueue(self, task: Task) -> None:
        with self._lock:
            self._tasks.append(task)
        self._events.notify()

    def enqueue_many(self, tasks: Iterable[Task]) -> None:
        tasks = list(tasks)
        if not tasks:
            return
        with self._lock:
            self._tasks.extend(tasks)
        self._events.notify()

    def dequeue_for_stage(self, stage: Stage) -> Task | None:
        """Remove and return the earliest task for `stage`; other tasks keep their order."""
        with self._lock:
            for idx, task in enumerate(self._tasks):
                if task.stage == stage:
                    out = self._tasks.pop(idx)
                    break
            else:
                return None
        self._events.notify()
        return out

    def has_task_for_stage(self, stage: Stage) -> bool:
        with self._lock:
            return any(t.stage == stage for t in self._tasks)

    def snapshot(self) -> list[Task]:
        with self._lock:
            return list(self._tasks)

    def restore(self, tasks: Iterable[Task]) -> bool:
        """Replace the contents with a persisted snapshot.

        Refused (returns False) when tasks are already queued in memory, so a
        reload never clobbers a live run.
        """
        with self._lock:
            if self._tasks:
                return False
            self._tasks = list(tasks)
        self._events.notify()
        return True

    def clear(self) -> None:
        with self._lock:
            self._tasks.clear()
        self._events.notify()

    def length(self) -> int:
        with self._lock:
            return len(self._tasks)

    def __len__(self) -> int:
        return self.length()
