from __future__ import annotations

import logging
import threading
import time
from typing import Dict, List, Optional, Tuple

from assetsweep.errors import PermissionDeniedError
from assetsweep.log import get_logger, job_logger
from assetsweep.models import JobStatus, ScanJob, ScanJobRequest, ScanResult
from assetsweep.pool import DEFAULT_QUEUE_CAPACITY, ScanPool
from assetsweep.probe import ProbeEngine
from assetsweep.resources import ResourceController
from assetsweep.storage import JobStore, ResultStore
from assetsweep.targets import expand_targets

logger = get_logger("engine")

RECURRING_INTERVAL = 24 * 60 * 60


class BatchScheduler:
    """Drives one job through its targets in resource-sized batches.

    Each batch is joined before the next one is sized, so thread count and
    batch size changes take effect at batch boundaries.  Cancellation is
    checked between batches only.
    """

    def __init__(
        self,
        store: JobStore,
        probe_engine: ProbeEngine,
        controller: ResourceController,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
    ) -> None:
        self.store = store
        self.probe_engine = probe_engine
        self.controller = controller
        self.queue_capacity = queue_capacity

    def run(self, job_id: str) -> Optional[ScanJob]:
        log = job_logger(logger, job_id)
        try:
            return self._run(job_id, log)
        except Exception:
            log.exception("Scan job failed")
            try:
                self.store.set_status(job_id, JobStatus.FAILED)
            except Exception:
                log.exception("Could not mark scan job as failed")
            return None

    def _run(self, job_id: str, log: logging.LoggerAdapter) -> ScanJob:
        job = self.store.get_job(job_id)
        if job.status == JobStatus.CANCELLED:
            log.info("Cancelled before it started")
            return job
        targets = expand_targets(job.ip_addresses, job.ip_segments)
        total = len(targets)
        if not self.store.begin_run(job_id, total, time.time()):
            log.info("Cancelled before it started")
            return self.store.get_job(job_id)
        log.info("Started %s with %d targets", job.name, total)

        completed = successful = failed = 0
        while completed < total:
            snapshot = self.controller.snapshot
            size = min(snapshot.batch_size, total - completed)
            batch = targets[completed:completed + size]

            ok, bad = self._run_batch(job_id, batch, snapshot.thread_count)
            completed += size
            successful += ok
            failed += bad
            self.store.update_progress(job_id, completed, successful, failed)
            log.info(
                "Progress: %d/%d (batch %d, threads %d)",
                completed, total, size, snapshot.thread_count,
            )

            current = self.store.get_job(job_id)
            if current.status == JobStatus.CANCELLED:
                log.info("Cancelled after %d/%d targets", completed, total)
                return current

        fields = {}
        if job.recurring:
            fields["next_run_at"] = time.time() + RECURRING_INTERVAL
        if not self.store.transition_status(job_id, JobStatus.RUNNING, JobStatus.COMPLETED, **fields):
            log.info("Left RUNNING before completion was recorded")
        log.info("Completed: %d successful, %d failed", successful, failed)
        return self.store.get_job(job_id)

    def _run_batch(self, job_id: str, batch: List[str], workers: int) -> Tuple[int, int]:
        successful = failed = 0
        with ScanPool(workers, self.queue_capacity) as pool:
            futures = [pool.submit(self.probe_engine.probe, job_id, address) for address in batch]
            for address, future in zip(batch, futures):
                try:
                    result = future.result()
                except Exception as e:
                    logger.warning("Probe of %s raised: %s", address, e)
                    failed += 1
                    continue
                if result.successful:
                    successful += 1
                else:
                    failed += 1
        return successful, failed


class JobManager:
    """Job lifecycle operations with ownership checks."""

    def __init__(self, store: JobStore, results: ResultStore, scheduler: Optional[BatchScheduler] = None) -> None:
        self.store = store
        self.results = results
        self.scheduler = scheduler
        self.threads: Dict[str, threading.Thread] = {}
        self.lock = threading.Lock()

    def create_job(self, request: ScanJobRequest, owner: str) -> ScanJob:
        declared = len(expand_targets(request.ip_addresses, request.ip_segments))
        job = ScanJob(
            owner=owner,
            name=request.name,
            description=request.description,
            ip_addresses=request.ip_addresses,
            ip_segments=request.ip_segments,
            recurring=request.recurring,
            schedule=request.schedule,
            total_targets=declared,
        )
        self.store.save_job(job)
        logger.info("Created scan job %s (%s) for %s with %d targets", job.id, job.name, owner, declared)
        return job

    def start(self, job_id: str) -> threading.Thread:
        """Run the job on a daemon thread and return immediately."""
        if self.scheduler is None:
            raise RuntimeError("JobManager was created without a scheduler")
        job = self.store.get_job(job_id)
        with self.lock:
            running = self.threads.get(job_id)
            if running and running.is_alive():
                raise ValueError(f"Scan job {job_id} is already running")
            t = threading.Thread(target=self.scheduler.run, args=(job.id,), name=f"job-{job.id[:8]}", daemon=True)
            self.threads[job_id] = t
        t.start()
        return t

    def _owned_job(self, job_id: str, owner: str) -> ScanJob:
        job = self.store.get_job(job_id)
        if job.owner != owner:
            raise PermissionDeniedError(job_id, owner)
        return job

    def cancel(self, job_id: str, owner: str) -> ScanJob:
        self._owned_job(job_id, owner)
        # Only CREATED and RUNNING jobs move; a finished job keeps its status.
        for current in (JobStatus.CREATED, JobStatus.RUNNING):
            if self.store.transition_status(job_id, current, JobStatus.CANCELLED):
                logger.info("Scan job %s cancellation requested by %s", job_id, owner)
                break
        return self.store.get_job(job_id)

    def delete_job(self, job_id: str, owner: str) -> None:
        self._owned_job(job_id, owner)
        self.store.delete_job(job_id)
        logger.info("Scan job %s deleted by %s", job_id, owner)

    def get_job(self, job_id: str) -> ScanJob:
        return self.store.get_job(job_id)

    def list_jobs(self, owner: Optional[str] = None, status: Optional[JobStatus] = None) -> List[ScanJob]:
        return self.store.list_jobs(owner=owner, status=status)

    def get_results(self, job_id: str) -> List[ScanResult]:
        self.store.get_job(job_id)
        return self.results.list_results(job_id=job_id)

    def due_jobs(self, now: Optional[float] = None) -> List[ScanJob]:
        return self.store.due_jobs(now if now is not None else time.time())

    def wait(self, job_id: str, timeout: Optional[float] = None) -> None:
        with self.lock:
            t = self.threads.get(job_id)
        if t:
            t.join(timeout)
