"""Deferred, fire-and-forget work scheduled after a mutation commits.

Delivery is best-effort: a task that raises is logged and dropped, never
retried.  Everything the engine defers is a pure re-derivation from the
ledger, so the next session write (or the periodic sweep) recomputes the
same state anyway.

``TASKS`` is the process-wide queue.  Library callers (and tests) drain it
explicitly with :meth:`TaskQueue.run_pending`; the worker process calls
:meth:`TaskQueue.start` so a ``QTimer`` drains it from the Qt event loop.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

logger = logging.getLogger(__name__)


@dataclass
class DeferredTask:
    name: str
    fn: Callable[..., Any]
    kwargs: dict[str, Any] = field(default_factory=dict)


class TaskQueue(QObject):
    """In-process deferred task queue.

    Signals
    -------
    task_enqueued(name: str)
    task_failed(name: str, error: Exception)
        Emitted when a task raises; the task is then discarded.
    """

    task_enqueued = pyqtSignal(str)
    task_failed = pyqtSignal(str, object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._pending: deque[DeferredTask] = deque()
        self._qt_timer: QTimer | None = None

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending_names(self) -> list[str]:
        return [t.name for t in self._pending]

    def enqueue(self, name: str, fn: Callable[..., Any], **kwargs: Any) -> None:
        self._pending.append(DeferredTask(name, fn, kwargs))
        logger.debug("enqueued %s %s", name, kwargs)
        self.task_enqueued.emit(name)

    def run_pending(self, limit: int | None = None) -> int:
        """Run queued tasks in FIFO order.  Returns how many ran (ok or not).

        Tasks enqueued by a running task are picked up in the same call.
        """
        ran = 0
        while self._pending and (limit is None or ran < limit):
            task = self._pending.popleft()
            ran += 1
            try:
                task.fn(**task.kwargs)
            except Exception as exc:
                logger.exception("deferred task %s dropped", task.name)
                self.task_failed.emit(task.name, exc)
        return ran

    def clear(self) -> None:
        self._pending.clear()

    # ── event-loop driving (worker process) ─────────────────────────

    def start(self, interval_ms: int = 250) -> None:
        if self._qt_timer is None:
            self._qt_timer = QTimer(self)
            self._qt_timer.timeout.connect(self.run_pending)
        self._qt_timer.setInterval(interval_ms)
        self._qt_timer.start()

    def stop(self) -> None:
        if self._qt_timer is not None:
            self._qt_timer.stop()


# Module-level singleton
TASKS = TaskQueue()
