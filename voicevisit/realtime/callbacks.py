"""Dispatch of caller-supplied callbacks from inside transport event handlers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def invoke(callback: Optional[Callable[..., Any]], *args: Any, name: str = "callback") -> None:
    """Call ``callback`` with ``args``; coroutine results are scheduled, failures logged.

    Callbacks run inside channel and peer-connection handlers, so an exception
    here must never escape into the transport.
    """
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            task.add_done_callback(lambda t: _log_task_failure(t, name))
    except Exception as e:
        logger.warning("Error in %s callback: %s", name, e, exc_info=True)


def _log_task_failure(task: "asyncio.Future[Any]", name: str) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("Error in %s callback: %s", name, error, exc_info=error)
