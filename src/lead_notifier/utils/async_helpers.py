"""Async helpers for Celery tasks.

Celery tasks run in a synchronous context; the delivery pipeline is async
(httpx + SQLAlchemy asyncio), so every task body goes through ``run_async``.
"""

import asyncio
import logging
import threading
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """
    Run an async coroutine from a Celery task.

    Args:
        coro: The coroutine to run

    Returns:
        The result of the coroutine
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No loop in this thread: the normal case for a prefork worker
        return asyncio.run(coro)

    # A loop is already running (eager tasks called from async code)
    logger.debug("Event loop is already running, executing coroutine in a helper thread")
    result = None
    exception = None

    def run_in_thread():
        nonlocal result, exception
        try:
            result = asyncio.run(coro)
        except BaseException as e:
            exception = e

    thread = threading.Thread(target=run_in_thread)
    thread.start()
    thread.join()

    if exception:
        raise exception
    return result
