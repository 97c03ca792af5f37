"""
Background task management for best-effort side effects.

Analytics writes that follow a billing change must never block or fail the
change itself. ``BestEffortNotifier`` schedules such calls after the
response when a FastAPI ``BackgroundTasks`` is available, on the event
loop's executor when called from async code, and inline otherwise. In every
mode a failing call is logged and dropped.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from fastapi import BackgroundTasks

logger = logging.getLogger(__name__)


def _call_safely(func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    name = getattr(func, "__name__", repr(func))
    try:
        func(*args, **kwargs)
    except Exception as e:
        # Don't raise - background tasks should not affect main flow
        logger.error(f"Background task {name} failed: {e}", exc_info=True)


class BestEffortNotifier:
    """Fire-and-forget dispatcher for side effects that may fail independently."""

    def __init__(self, background_tasks: BackgroundTasks | None = None):
        self._background_tasks = background_tasks
        self._pending: set[asyncio.Future] = set()

    def notify(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Schedule ``func(*args, **kwargs)``; never raises."""
        try:
            if self._background_tasks is not None:
                self._background_tasks.add_task(_call_safely, func, *args, **kwargs)
                return

            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No event loop running in this thread, run inline
                _call_safely(func, *args, **kwargs)
                return

            future = loop.run_in_executor(None, lambda: _call_safely(func, *args, **kwargs))
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)

        except Exception as e:
            logger.error(f"Failed to schedule background task: {e}", exc_info=True)

    def pending_count(self) -> int:
        """Get count of in-flight executor tasks (for monitoring)"""
        return sum(1 for future in self._pending if not future.done())
