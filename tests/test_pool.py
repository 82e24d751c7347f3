"""Tests for assetsweep.pool.ScanPool (bounded backlog, caller-runs)."""
from __future__ import annotations

import threading

import pytest

from assetsweep.pool import ScanPool


class TestScanPool:
    def test_runs_tasks_and_returns_results(self):
        with ScanPool(workers=3) as pool:
            futures = [pool.submit(lambda x: x * 2, i) for i in range(10)]
            assert [f.result() for f in futures] == [i * 2 for i in range(10)]
        assert pool.caller_runs == 0

    def test_exception_surfaces_on_future(self):
        def boom():
            raise ValueError("bad target")

        with ScanPool(workers=1) as pool:
            future = pool.submit(boom)
            with pytest.raises(ValueError):
                future.result()

    def test_saturated_pool_runs_on_caller(self):
        release = threading.Event()
        submitter = threading.current_thread()
        seen: list[threading.Thread] = []

        def blocker():
            release.wait(5)

        def record():
            seen.append(threading.current_thread())
            return "ran"

        with ScanPool(workers=1, queue_capacity=1) as pool:
            blocked = [pool.submit(blocker), pool.submit(blocker)]
            overflow = pool.submit(record)
            assert overflow.done()
            assert overflow.result() == "ran"
            assert seen == [submitter]
            assert pool.caller_runs == 1
            release.set()
            for f in blocked:
                f.result()

    def test_caller_run_exception_captured(self):
        release = threading.Event()

        def boom():
            raise KeyError("x")

        with ScanPool(workers=1, queue_capacity=0) as pool:
            blocked = pool.submit(release.wait, 5)
            overflow = pool.submit(boom)
            with pytest.raises(KeyError):
                overflow.result()
            release.set()
            blocked.result()

    def test_worker_floor(self):
        with ScanPool(workers=0) as pool:
            assert pool.workers == 1
            assert pool.submit(lambda: 5).result() == 5
