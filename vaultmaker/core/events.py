from __future__ import annotations

import threading
from typing import Callable

Listener = Callable[[], None]


class EventBus:
    """Synchronous observer registry.

    Every listener is called after each state mutation. An exception raised by
    one listener is swallowed so it cannot reach the scheduler loop or starve
    the other listeners.
    """

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for fn in listeners:
            try:
                fn()
            except Exception:
                pass
