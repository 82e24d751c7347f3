from __future__ import annotations

import pytest

from assetsweep.models import ResourceSnapshot, ScanResult
from assetsweep.storage import Database


@pytest.fixture
def tmp_db(tmp_path):
    """Fresh SQLite database in a temp directory."""
    db_path = str(tmp_path / "test.db")
    return Database(db_path=db_path)


class FixedController:
    """Resource controller stand-in with a constant snapshot."""

    def __init__(self, thread_count: int = 2, batch_size: int = 20) -> None:
        self.snapshot = ResourceSnapshot(thread_count=thread_count, batch_size=batch_size)


class RecordingProbe:
    """Probe engine stand-in that records calls and stores a result."""

    def __init__(self, store: Database, fail: set[str] | None = None, raise_for: set[str] | None = None) -> None:
        self.store = store
        self.fail = fail or set()
        self.raise_for = raise_for or set()
        self.calls: list[str] = []
        self.hook = None

    def probe(self, job_id: str, address: str) -> ScanResult:
        self.calls.append(address)
        if self.hook:
            self.hook(job_id, address)
        if address in self.raise_for:
            raise RuntimeError(f"boom {address}")
        ok = address not in self.fail
        result = ScanResult(job_id=job_id, address=address, successful=ok, error=None if ok else "unreachable")
        self.store.add_result(result)
        return result


@pytest.fixture
def fixed_controller():
    return FixedController()


@pytest.fixture
def recording_probe(tmp_db):
    return RecordingProbe(tmp_db)


@pytest.fixture
def sample_windows_info():
    return {
        "os_name": "Microsoft Windows 11 Pro",
        "os_version": "10.0.22631",
        "cpu_model": "Intel(R) Core(TM) i7-1185G7",
        "cpu_cores": "4",
        "ram_size": "31.75 GB",
        "gpu_name": "Intel(R) Iris(R) Xe Graphics",
        "manufacturer": "Dell Inc.",
        "model": "Latitude 7420",
        "last_user": "CORP\\alice",
    }
