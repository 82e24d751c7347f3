from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterable, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel

from assetsweep.errors import JobNotFoundError
from assetsweep.models import Asset, AssetType, JobStatus, ScanJob, ScanResult

M = TypeVar("M", bound=BaseModel)

JOB_JSON_FIELDS = ("ip_addresses", "ip_segments")
RESULT_JSON_FIELDS = ("data",)
ASSET_JSON_FIELDS = ("attributes",)


class JobStore(Protocol):
    def save_job(self, job: ScanJob) -> ScanJob: ...

    def get_job(self, job_id: str) -> ScanJob: ...

    def begin_run(self, job_id: str, total_targets: int, started_at: float) -> bool: ...

    def update_progress(self, job_id: str, completed: int, successful: int, failed: int) -> None: ...

    def set_status(self, job_id: str, status: JobStatus) -> None: ...

    def transition_status(self, job_id: str, expected: JobStatus, status: JobStatus, **fields: Any) -> bool: ...

    def list_jobs(self, owner: Optional[str] = None, status: Optional[JobStatus] = None) -> List[ScanJob]: ...

    def due_jobs(self, before: float) -> List[ScanJob]: ...

    def delete_job(self, job_id: str) -> None: ...


class ResultStore(Protocol):
    def add_result(self, result: ScanResult) -> ScanResult: ...

    def list_results(self, job_id: Optional[str] = None, asset_id: Optional[str] = None) -> List[ScanResult]: ...


class AssetStore(Protocol):
    def find_asset_by_address(self, address: str) -> Optional[Asset]: ...

    def get_asset(self, asset_id: str) -> Optional[Asset]: ...

    def save_asset(self, asset: Asset) -> Asset: ...

    def list_assets(self, asset_type: Optional[AssetType] = None, online: Optional[bool] = None) -> List[Asset]: ...


def _to_row(model: BaseModel, json_fields: Iterable[str]) -> Dict[str, Any]:
    row = model.model_dump(mode="json")
    for field in json_fields:
        row[field] = json.dumps(row[field])
    for key, value in row.items():
        if isinstance(value, bool):
            row[key] = int(value)
    return row


def _from_row(model_cls: Type[M], row: sqlite3.Row, json_fields: Iterable[str]) -> M:
    data = dict(row)
    for field in json_fields:
        raw = data.get(field)
        try:
            data[field] = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            data[field] = None
        if data[field] is None:
            del data[field]
    return model_cls.model_validate(data)


class Database:
    """SQLite implementation of the job, result and asset stores.

    Every call opens its own connection, so one instance can be shared by the
    scan worker threads.
    """

    def __init__(self, db_path: str = "assetsweep.db", timeout: float = 30.0) -> None:
        self.db_path = db_path
        self.timeout = timeout
        self._init_db()

    def _init_db(self) -> None:
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    ip_addresses JSON,
                    ip_segments JSON,
                    recurring INTEGER DEFAULT 0,
                    schedule TEXT,
                    status TEXT NOT NULL,
                    total_targets INTEGER DEFAULT 0,
                    completed_targets INTEGER DEFAULT 0,
                    successful_targets INTEGER DEFAULT 0,
                    failed_targets INTEGER DEFAULT 0,
                    created_at REAL,
                    last_run_at REAL,
                    next_run_at REAL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS results (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    asset_id TEXT,
                    address TEXT NOT NULL,
                    hostname TEXT,
                    successful INTEGER DEFAULT 0,
                    error TEXT,
                    scanned_at REAL,
                    data JSON
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS assets (
                    id TEXT PRIMARY KEY,
                    address TEXT NOT NULL UNIQUE,
                    hostname TEXT,
                    asset_type TEXT,
                    operating_system TEXT,
                    os_version TEXT,
                    mac_address TEXT,
                    manufacturer TEXT,
                    model TEXT,
                    cpu_model TEXT,
                    cpu_cores TEXT,
                    ram_size TEXT,
                    gpu_name TEXT,
                    last_user TEXT,
                    online INTEGER DEFAULT 0,
                    first_seen REAL,
                    last_seen REAL,
                    last_scan_id TEXT,
                    attributes JSON
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_jobs_owner ON jobs(owner)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_results_job ON results(job_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_results_asset ON results(asset_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_assets_type ON assets(asset_type)")

            conn.commit()

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _insert_or_replace(self, table: str, row: Dict[str, Any]) -> None:
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {table} ({columns}) VALUES ({placeholders})",
                list(row.values()),
            )
            conn.commit()

    # Jobs

    def save_job(self, job: ScanJob) -> ScanJob:
        self._insert_or_replace("jobs", _to_row(job, JOB_JSON_FIELDS))
        return job

    def find_job(self, job_id: str) -> Optional[ScanJob]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        return _from_row(ScanJob, row, JOB_JSON_FIELDS)

    def get_job(self, job_id: str) -> ScanJob:
        job = self.find_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def begin_run(self, job_id: str, total_targets: int, started_at: float) -> bool:
        """Mark the job RUNNING and zero its counters.  False if it was cancelled."""
        with self._connect() as conn:
            cursor = conn.execute("""
                UPDATE jobs
                SET status = ?, last_run_at = ?, total_targets = ?,
                    completed_targets = 0, successful_targets = 0, failed_targets = 0
                WHERE id = ? AND status != ?
            """, (JobStatus.RUNNING.value, started_at, total_targets, job_id, JobStatus.CANCELLED.value))
            conn.commit()
            return cursor.rowcount == 1

    def update_progress(self, job_id: str, completed: int, successful: int, failed: int) -> None:
        """Write the counters only; the status column is left alone."""
        with self._connect() as conn:
            conn.execute("""
                UPDATE jobs
                SET completed_targets = ?, successful_targets = ?, failed_targets = ?
                WHERE id = ?
            """, (completed, successful, failed, job_id))
            conn.commit()

    def set_status(self, job_id: str, status: JobStatus) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE jobs SET status = ? WHERE id = ?", (status.value, job_id))
            conn.commit()

    def transition_status(self, job_id: str, expected: JobStatus, status: JobStatus, **fields: Any) -> bool:
        """Move ``expected`` -> ``status`` atomically.  False if the job was elsewhere."""
        assignments = ["status = ?"]
        params: List[Any] = [status.value]
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            params.append(value)
        params += [job_id, expected.value]
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE jobs SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                params,
            )
            conn.commit()
            return cursor.rowcount == 1

    def list_jobs(self, owner: Optional[str] = None, status: Optional[JobStatus] = None) -> List[ScanJob]:
        clauses = []
        params: List[Any] = []
        if owner:
            clauses.append("owner = ?")
            params.append(owner)
        if status:
            clauses.append("status = ?")
            params.append(status.value)
        where_clause = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM jobs {where_clause} ORDER BY created_at DESC", params
            ).fetchall()
        return [_from_row(ScanJob, row, JOB_JSON_FIELDS) for row in rows]

    def due_jobs(self, before: float) -> List[ScanJob]:
        """Recurring jobs whose next run is at or before ``before`` and not running."""
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM jobs
                WHERE recurring = 1 AND next_run_at IS NOT NULL AND next_run_at <= ? AND status != ?
                ORDER BY next_run_at
            """, (before, JobStatus.RUNNING.value)).fetchall()
        return [_from_row(ScanJob, row, JOB_JSON_FIELDS) for row in rows]

    def delete_job(self, job_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM results WHERE job_id = ?", (job_id,))
            conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            conn.commit()

    # Results

    def add_result(self, result: ScanResult) -> ScanResult:
        self._insert_or_replace("results", _to_row(result, RESULT_JSON_FIELDS))
        return result

    def list_results(self, job_id: Optional[str] = None, asset_id: Optional[str] = None) -> List[ScanResult]:
        clauses = []
        params: List[Any] = []
        if job_id:
            clauses.append("job_id = ?")
            params.append(job_id)
        if asset_id:
            clauses.append("asset_id = ?")
            params.append(asset_id)
        where_clause = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM results {where_clause} ORDER BY scanned_at", params
            ).fetchall()
        return [_from_row(ScanResult, row, RESULT_JSON_FIELDS) for row in rows]

    # Assets

    def find_asset_by_address(self, address: str) -> Optional[Asset]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM assets WHERE address = ?", (address,)).fetchone()
        return _from_row(Asset, row, ASSET_JSON_FIELDS) if row else None

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM assets WHERE id = ?", (asset_id,)).fetchone()
        return _from_row(Asset, row, ASSET_JSON_FIELDS) if row else None

    def save_asset(self, asset: Asset) -> Asset:
        row = _to_row(asset, ASSET_JSON_FIELDS)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id FROM assets WHERE id = ?", (asset.id,))
            if cursor.fetchone():
                assignments = ", ".join(f"{column} = ?" for column in row if column != "id")
                values = [value for column, value in row.items() if column != "id"]
                cursor.execute(f"UPDATE assets SET {assignments} WHERE id = ?", values + [asset.id])
            else:
                columns = ", ".join(row)
                placeholders = ", ".join("?" for _ in row)
                cursor.execute(f"INSERT INTO assets ({columns}) VALUES ({placeholders})", list(row.values()))
            conn.commit()
        return asset

    def list_assets(self, asset_type: Optional[AssetType] = None, online: Optional[bool] = None) -> List[Asset]:
        clauses = []
        params: List[Any] = []
        if asset_type:
            clauses.append("asset_type = ?")
            params.append(asset_type.value)
        if online is not None:
            clauses.append("online = ?")
            params.append(int(online))
        where_clause = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM assets {where_clause} ORDER BY address", params
            ).fetchall()
        return [_from_row(Asset, row, ASSET_JSON_FIELDS) for row in rows]
