from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field

from vaultmaker.core.events import EventBus
from vaultmaker.core.logfile import log
from vaultmaker.core.stages import Stage

IDLE = "idle"
PROCESSING = "processing"
STOPPING = "stopping"


@dataclass
class RunStatus:
    """Read-only view of a run handed to status consumers."""

    status: str
    current_stage: Stage | None
    current_task: str | None
    log: list[str]
    vault_path: str | None
    vault_name: str | None
    source_dir: str | None
    queue_length: int = 0
    processed_count: int = 0

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "currentStage": self.current_stage.value if self.current_stage else None,
            "currentTask": self.current_task,
            "log": list(self.log),
            "vaultPath": self.vault_path,
            "vaultName": self.vault_name,
            "sourceDir": self.source_dir,
            "queueLength": self.queue_length,
            "processedCount": self.processed_count,
        }


@dataclass
class RunState:
    """Live state of one vault's run; owned by a Scheduler instance."""

    events: EventBus
    ring_size: int = 100
    status: str = IDLE
    current_stage: Stage | None = None
    current_task: str | None = None
    appended: int = 0
    _lines: deque = field(init=False)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock)

    def __post_init__(self):
        self._lines = deque(maxlen=self.ring_size)

    def append_log(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)
            self.appended += 1
        log(line)
        self.events.notify()

    def lines(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def clear_log(self) -> None:
        with self._lock:
            self._lines.clear()
        self.events.notify()

    def set_status(self, status: str, current_task: str | None = None) -> None:
        self.status = status
        self.current_task = current_task
        self.events.notify()

    def set_stage(self, stage: Stage | None) -> None:
        self.current_stage = stage
        self.events.notify()

    def reset(self) -> None:
        self.status = IDLE
        self.current_stage = None
        self.current_task = None
        self.clear_log()
