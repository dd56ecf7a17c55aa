"""Task dispatcher for interactive front-ends.

Each submitted operation runs on its own worker thread. Results come back
as CompletionEvents on a single queue that only the front-end consumes;
workers never call back into front-end state.
"""

import itertools
import queue
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import AwsxError
from .common.logging import get_logger

logger = get_logger(__name__)


class CompletionEvent(BaseModel):
    """Result or error of one dispatched task."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    task_id: int
    name: str
    result: Any = None
    error: BaseException | None = None
    finished_at: datetime = Field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskDispatcher:
    """Runs blocking operations off the caller's thread."""

    def __init__(self) -> None:
        self._events: queue.Queue[CompletionEvent] = queue.Queue()
        self._ids = itertools.count(1)
        self._running: dict[int, tuple[str, threading.Thread]] = {}
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> int:
        """Start fn(*args, **kwargs) on a new worker.

        Returns:
            Task ID carried by the matching CompletionEvent
        """
        task_id = next(self._ids)
        thread = threading.Thread(
            target=self._run,
            args=(task_id, name, fn, args, kwargs),
            name=f"awsx-task-{task_id}",
            daemon=True,
        )
        with self._lock:
            self._running[task_id] = (name, thread)
        thread.start()
        logger.debug("Task submitted", task_id=task_id, name=name)
        return task_id

    def submit_unique(
        self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> int | None:
        """Like submit, but skipped while a task with the same name is running.

        Used for periodic work such as the probe cycle so ticks never overlap.
        """
        if self.is_running(name):
            logger.debug("Task already running, skipped", name=name)
            return None
        return self.submit(name, fn, *args, **kwargs)

    def _run(
        self,
        task_id: int,
        name: str,
        fn: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> None:
        try:
            event = CompletionEvent(task_id=task_id, name=name, result=fn(*args, **kwargs))
        except AwsxError as e:
            logger.warning("Task failed", task_id=task_id, name=name, error=str(e))
            event = CompletionEvent(task_id=task_id, name=name, error=e)
        except Exception as e:
            logger.exception("Task crashed", task_id=task_id, name=name)
            event = CompletionEvent(task_id=task_id, name=name, error=e)
        self._events.put(event)
        with self._lock:
            self._running.pop(task_id, None)

    def is_running(self, name: str) -> bool:
        with self._lock:
            return any(task_name == name for task_name, _ in self._running.values())

    def running(self) -> list[str]:
        with self._lock:
            return [name for name, _ in self._running.values()]

    def poll(self) -> list[CompletionEvent]:
        """Drain completed events without blocking."""
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    def next_event(self, timeout: float | None = None) -> CompletionEvent | None:
        """Wait for the next completed event, or None on timeout."""
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def join(self, timeout: float | None = None) -> bool:
        """Wait for running tasks. Returns False if some are still running."""
        with self._lock:
            threads = [thread for _, thread in self._running.values()]
        for thread in threads:
            thread.join(timeout)
        with self._lock:
            return not self._running
