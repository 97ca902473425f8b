"""
Projection of job lifecycle transitions onto external task/group records

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

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from .jobs import GroupedRepositoryJob, Job, JobState, SingleRepositoryJob

# External records use their own vocabulary for job states
RECORD_STATUS = {
    JobState.PENDING: "pending",
    JobState.RUNNING: "running",
    JobState.COMPLETED: "success",
    JobState.FAILED: "error",
}


@dataclass(frozen=True)
class StatusRecord:
    status: str
    updated_at: datetime
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    clear_error: bool = False

    @classmethod
    def for_state(
        cls, state: JobState, error: Optional[str] = None, now: Optional[datetime] = None
    ) -> "StatusRecord":
        now = now or datetime.now(timezone.utc)
        return cls(
            status=RECORD_STATUS[state],
            updated_at=now,
            last_run=now if state is JobState.RUNNING else None,
            last_error=error,
            clear_error=state is JobState.COMPLETED and error is None,
        )


class StatusProjector(ABC):
    @abstractmethod
    def project(self, job: Job, record: StatusRecord) -> None:
        pass

    def transition(self, job: Job, state: JobState, error: Optional[str] = None) -> None:
        self.project(job, StatusRecord.for_state(state, error))


class CallbackStatusProjector(StatusProjector):
    """Forwards records to task/group update callbacks keyed by external record id"""

    def __init__(
        self,
        update_task: Optional[Callable[[str, StatusRecord], None]] = None,
        update_group: Optional[Callable[[str, StatusRecord], None]] = None,
    ):
        self.update_task = update_task
        self.update_group = update_group

    def project(self, job: Job, record: StatusRecord) -> None:
        payload = job.payload
        if isinstance(payload, SingleRepositoryJob):
            if payload.task_id and self.update_task:
                self.update_task(payload.task_id, record)
                logger.debug(f"[STATUS] Task {payload.task_id} status updated to {record.status}")
        elif isinstance(payload, GroupedRepositoryJob):
            if payload.group_task_id and self.update_group:
                self.update_group(payload.group_task_id, record)
                logger.debug(
                    f"[STATUS] GroupTask {payload.group_task_id} status updated to {record.status}"
                )
        else:
            raise TypeError(f"Unsupported job payload: {type(payload).__name__}")


class LoggingStatusProjector(StatusProjector):
    def project(self, job: Job, record: StatusRecord) -> None:
        suffix = f" ({record.last_error})" if record.last_error else ""
        logger.info(f"[STATUS] Job {job.id} -> {record.status}{suffix}")
