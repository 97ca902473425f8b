"""
In-memory backup job queue drained by a single worker thread

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import queue
import threading
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

from loguru import logger

from .archiver import DEFAULT_COMPRESSION_LEVEL, validate_compression_level
from .base import DestinationCredential, ProgressEvent, RepositoryRef
from .errors import JobNotFound
from .jobs import (
    GroupedRepositoryJob,
    Job,
    JobPayload,
    JobState,
    QueueStatus,
    SingleRepositoryJob,
    new_job_id,
)
from .orchestrator import BackupOrchestrator
from .status import StatusProjector

JobProgressSink = Callable[[str, ProgressEvent], None]

DEFAULT_WORKER_PAUSE = 0.5


class JobQueue:
    """
    Ordered in-memory job queue with exactly one worker.

    enqueue() appends the job and signals the worker thread through a
    blocking channel; the worker runs jobs one at a time in FIFO order.
    Jobs live only in process memory and are lost on restart.
    """

    def __init__(
        self,
        orchestrator: BackupOrchestrator,
        projector: Optional[StatusProjector] = None,
        progress_sink: Optional[JobProgressSink] = None,
        pause_between_jobs: float = DEFAULT_WORKER_PAUSE,
    ):
        self.orchestrator = orchestrator
        self.projector = projector
        self.progress_sink = progress_sink
        self.pause_between_jobs = pause_between_jobs

        self._jobs: List[Job] = []
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._channel: "queue.Queue[Optional[str]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._busy = False
        self._closed = False

    def enqueue_single(
        self,
        user_id: str,
        repository: RepositoryRef,
        destinations: Optional[List[DestinationCredential]] = None,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        task_id: Optional[str] = None,
        destination_prefix: Optional[str] = None,
    ) -> str:
        return self.enqueue(
            SingleRepositoryJob(
                user_id=user_id,
                repository=repository,
                destinations=tuple(destinations or ()),
                compression_level=compression_level,
                destination_prefix=destination_prefix,
                task_id=task_id,
            )
        )

    def enqueue_group(
        self,
        user_id: str,
        repositories: List[RepositoryRef],
        destination_prefix: Optional[str],
        destinations: Optional[List[DestinationCredential]] = None,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        group_task_id: Optional[str] = None,
    ) -> str:
        return self.enqueue(
            GroupedRepositoryJob(
                user_id=user_id,
                repositories=tuple(repositories),
                destination_prefix=destination_prefix,
                destinations=tuple(destinations or ()),
                compression_level=compression_level,
                group_task_id=group_task_id,
            )
        )

    def enqueue(self, payload: JobPayload) -> str:
        """Append a pending job and wake the worker. Never blocks on job execution."""
        if not isinstance(payload, (SingleRepositoryJob, GroupedRepositoryJob)):
            raise TypeError(f"Unsupported job payload: {type(payload).__name__}")
        validate_compression_level(payload.compression_level)

        job = Job(id=new_job_id(payload.id_prefix), payload=payload)
        with self._lock:
            if self._closed:
                raise RuntimeError("Job queue has been shut down")
            self._jobs.append(job)
            self._channel.put(job.id)
            self._ensure_worker()

        logger.info(f"[QUEUE] Job {job.id} added to queue for {payload.describe()}")
        return job.id

    def start(self) -> None:
        """Start the worker if it is not running; a shut down queue stays stopped"""
        with self._lock:
            if self._closed:
                return
            self._ensure_worker()

    def _ensure_worker(self) -> None:
        # Caller holds self._lock
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(
            target=self._run_worker, name="backup-worker", daemon=True
        )
        self._worker.start()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Stop accepting jobs; the worker exits once queued jobs are drained"""
        with self._lock:
            self._closed = True
            worker = self._worker
            self._channel.put(None)
        if wait and worker is not None:
            worker.join(timeout)

    def status(self) -> QueueStatus:
        with self._lock:
            states = [job.state for job in self._jobs]
            return QueueStatus(
                total=len(states),
                pending=states.count(JobState.PENDING),
                running=states.count(JobState.RUNNING),
                completed=states.count(JobState.COMPLETED),
                failed=states.count(JobState.FAILED),
                worker_active=self._busy,
            )

    def clear_completed(self) -> int:
        """Drop completed and failed jobs; pending and running jobs are kept"""
        with self._lock:
            before = len(self._jobs)
            self._jobs = [job for job in self._jobs if not job.is_terminal]
            cleared = before - len(self._jobs)
        logger.info(f"[QUEUE] Cleared {cleared} completed/failed jobs")
        return cleared

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            return replace(self._find(job_id))

    def jobs(self, state: Optional[JobState] = None) -> List[Job]:
        with self._lock:
            return [replace(job) for job in self._jobs if state is None or job.state is state]

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """
        Block until a job reaches a terminal state.

        Raises:
            JobNotFound: If the job is unknown
            TimeoutError: If the job is still pending or running after timeout
        """
        with self._changed:
            job = self._find(job_id)
            if not self._changed.wait_for(lambda: job.is_terminal, timeout):
                raise TimeoutError(f"Job {job_id} still {job.state.value} after {timeout}s")
            return replace(job)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until no job is pending or running"""
        with self._changed:
            return self._changed.wait_for(
                lambda: all(job.is_terminal for job in self._jobs), timeout
            )

    def _find(self, job_id: str) -> Job:
        # Caller holds self._lock
        for job in self._jobs:
            if job.id == job_id:
                return job
        raise JobNotFound(job_id)

    def _run_worker(self) -> None:
        logger.info(f"[QUEUE] Worker started - {self._channel.qsize()} job(s) waiting")
        while True:
            job_id = self._channel.get()
            if job_id is None:
                break

            job = self._claim(job_id)
            if job is None:
                continue
            self._process(job)

            # Yield between jobs so other work sharing the process is not starved
            time.sleep(self.pause_between_jobs)

        with self._lock:
            self._busy = False
        logger.info("[QUEUE] Worker stopped - all jobs processed")

    def _claim(self, job_id: str) -> Optional[Job]:
        with self._lock:
            try:
                job = self._find(job_id)
            except JobNotFound:
                return None
            if job.state is not JobState.PENDING:
                return None
            job.state = JobState.RUNNING
            job.started_at = datetime.now(timezone.utc)
            self._busy = True
            return job

    def _process(self, job: Job) -> None:
        logger.info(f"[QUEUE] Processing job {job.id} for {job.payload.describe()}")
        self._project(job, JobState.RUNNING)

        try:
            result = self._dispatch(job)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"[QUEUE] Job {job.id} failed: {error}")
            self._project(job, JobState.FAILED, error)
            self._finish(job, JobState.FAILED, error=error)
            return

        self._project(job, JobState.COMPLETED)
        self._finish(job, JobState.COMPLETED, result=result)
        logger.info(f"[QUEUE] Job {job.id} completed successfully")

    def _finish(self, job: Job, state: JobState, result=None, error: Optional[str] = None) -> None:
        with self._lock:
            job.state = state
            job.result = result
            job.error = error
            job.completed_at = datetime.now(timezone.utc)
            if self._channel.empty():
                self._busy = False
            self._changed.notify_all()

    def _dispatch(self, job: Job):
        payload = job.payload
        sink = self._sink_for(job)
        if isinstance(payload, SingleRepositoryJob):
            return self.orchestrator.run_single(
                user_id=payload.user_id,
                repository=payload.repository,
                destinations=list(payload.destinations),
                compression_level=payload.compression_level,
                destination_prefix=payload.destination_prefix,
                progress_sink=sink,
            )
        if isinstance(payload, GroupedRepositoryJob):
            return self.orchestrator.run_group(
                user_id=payload.user_id,
                repositories=list(payload.repositories),
                destination_prefix=payload.destination_prefix,
                destinations=list(payload.destinations),
                compression_level=payload.compression_level,
                progress_sink=sink,
            )
        raise TypeError(f"Unsupported job payload: {type(payload).__name__}")

    def _sink_for(self, job: Job) -> Callable[[ProgressEvent], None]:
        def sink(event: ProgressEvent) -> None:
            with self._lock:
                job.last_event = event
            if self.progress_sink is not None:
                self.progress_sink(job.id, event)

        return sink

    def _project(self, job: Job, state: JobState, error: Optional[str] = None) -> None:
        if self.projector is None:
            return
        try:
            self.projector.transition(job, state, error)
        except Exception as e:
            logger.error(f"[STATUS] Error updating status for job {job.id}: {e}")
