from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from assetsweep.log import get_logger

logger = get_logger("pool")

DEFAULT_QUEUE_CAPACITY = 250


class ScanPool:
    """Thread pool with a bounded backlog.

    At most ``workers + queue_capacity`` tasks are in flight.  Once that is
    reached, :meth:`submit` runs the task on the calling thread instead of
    queueing it, which throttles the submitter to the pool's pace.
    """

    def __init__(self, workers: int, queue_capacity: int = DEFAULT_QUEUE_CAPACITY) -> None:
        self.workers = max(1, workers)
        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="scan")
        self._slots = threading.BoundedSemaphore(self.workers + max(0, queue_capacity))
        self.caller_runs = 0

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        if not self._slots.acquire(blocking=False):
            self.caller_runs += 1
            logger.debug("Pool saturated, running task on the submitting thread")
            future: Future = Future()
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)
            return future

        try:
            future = self._executor.submit(fn, *args)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(lambda _: self._slots.release())
        return future

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "ScanPool":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()
