"""Resource-aware tuning of scan concurrency.

A single monitor thread samples CPU and memory load and publishes a new
:class:`ResourceSnapshot`.  Readers only ever dereference the current
snapshot, so thread count and batch size are always seen as a pair.
"""
from __future__ import annotations

import os
import threading
import time
from typing import Callable, Optional

import psutil

from assetsweep.log import get_logger
from assetsweep.models import ResourceSnapshot

logger = get_logger("resources")

MIN_THREADS = 2
MIN_BATCH = 20
MAX_INITIAL_BATCH = 500
MAX_BATCH = 1000
BATCH_STEP = 20
DEFAULT_CPU_LOAD = 0.5

HIGH_CPU = 0.8
LOW_CPU = 0.3
MEMORY_OK = 0.7
HIGH_MEMORY = 0.8

Sampler = Callable[[], Optional[float]]


class CpuLoadSampler:
    """CPU load since the previous call, as a 0..1 fraction.

    The first non-blocking ``psutil.cpu_percent`` call has no reference
    interval and always reads 0.0, so it yields ``None`` instead.
    """

    def __init__(self) -> None:
        self._primed = False

    def __call__(self) -> Optional[float]:
        percent = psutil.cpu_percent(interval=None)
        if not self._primed:
            self._primed = True
            return None
        return percent / 100.0


def sample_memory_load() -> float:
    return psutil.virtual_memory().percent / 100.0


def available_memory_mb() -> int:
    return int(psutil.virtual_memory().available / (1024 * 1024))


class ResourceController:
    def __init__(
        self,
        cpu_sampler: Optional[Sampler] = None,
        memory_sampler: Sampler = sample_memory_load,
        core_count: Optional[int] = None,
        memory_mb: Optional[int] = None,
        interval: float = 5.0,
    ) -> None:
        self._cpu_sampler = cpu_sampler or CpuLoadSampler()
        self._memory_sampler = memory_sampler
        self.core_count = core_count or os.cpu_count() or 1
        self.interval = interval
        self._write_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._snapshot = self._calibrate(memory_mb)

    def _calibrate(self, memory_mb: Optional[int]) -> ResourceSnapshot:
        if memory_mb is None:
            memory_mb = available_memory_mb()
        threads = max(MIN_THREADS, int(self.core_count * 0.75))
        batch = max(MIN_BATCH, min(MAX_INITIAL_BATCH, memory_mb // 4))
        logger.info("System calibration: %d threads, batch size of %d", threads, batch)
        return ResourceSnapshot(thread_count=threads, batch_size=batch, sampled_at=time.time())

    @property
    def snapshot(self) -> ResourceSnapshot:
        return self._snapshot

    @property
    def thread_count(self) -> int:
        return self._snapshot.thread_count

    @property
    def batch_size(self) -> int:
        return self._snapshot.batch_size

    def _read_cpu(self) -> float:
        try:
            value = self._cpu_sampler()
        except Exception as e:
            logger.debug("CPU load sample unavailable: %s", e)
            return DEFAULT_CPU_LOAD
        if value is None or value < 0:
            return DEFAULT_CPU_LOAD
        return min(float(value), 1.0)

    def adjust(self) -> ResourceSnapshot:
        """Take one sample and publish the adjusted snapshot.

        Errors are logged and the previous snapshot stays in place.
        """
        try:
            cpu = self._read_cpu()
            memory = float(self._memory_sampler())
        except Exception as e:
            logger.warning("Error adjusting resources: %s", e)
            return self._snapshot

        with self._write_lock:
            current = self._snapshot
            threads = current.thread_count
            batch = current.batch_size

            if cpu > HIGH_CPU:
                threads = max(MIN_THREADS, threads - 1)
                batch = max(MIN_BATCH, batch // 2)
            elif cpu < LOW_CPU and memory < MEMORY_OK:
                threads = max(MIN_THREADS, min(self.core_count, threads + 1))
                batch = min(MAX_BATCH, batch + BATCH_STEP)

            if memory > HIGH_MEMORY:
                batch = max(MIN_BATCH, batch // 2)

            self._snapshot = ResourceSnapshot(
                thread_count=threads,
                batch_size=batch,
                cpu_load=cpu,
                memory_load=memory,
                sampled_at=time.time(),
            )

        logger.debug(
            "Resource adjustment: cpu=%.2f memory=%.2f threads=%d batch=%d",
            cpu, memory, threads, batch,
        )
        return self._snapshot

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.adjust()
            self._stop_event.wait(self.interval)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        t = threading.Thread(target=self._run, name="resource-monitor", daemon=True)
        self._thread = t
        t.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None
