"""
Job records for the backup queue

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

import random
import string
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .archiver import DEFAULT_COMPRESSION_LEVEL
from .base import DestinationCredential, ProgressEvent, RepositoryRef

_ID_ALPHABET = string.ascii_lowercase + string.digits


class JobKind(Enum):
    SINGLE_REPOSITORY = "single-repository"
    GROUPED_REPOSITORIES = "grouped-repositories"


class JobState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


@dataclass(frozen=True)
class SingleRepositoryJob:
    user_id: str
    repository: RepositoryRef
    destinations: Tuple[DestinationCredential, ...] = ()
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    destination_prefix: Optional[str] = None
    task_id: Optional[str] = None

    kind = JobKind.SINGLE_REPOSITORY
    id_prefix = "job"

    def describe(self) -> str:
        return self.repository.full_name


@dataclass(frozen=True)
class GroupedRepositoryJob:
    user_id: str
    repositories: Tuple[RepositoryRef, ...]
    destination_prefix: Optional[str]
    destinations: Tuple[DestinationCredential, ...] = ()
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    group_task_id: Optional[str] = None

    kind = JobKind.GROUPED_REPOSITORIES
    id_prefix = "group_job"

    def describe(self) -> str:
        return f"group of {len(self.repositories)} repositories"


JobPayload = Union[SingleRepositoryJob, GroupedRepositoryJob]


def new_job_id(prefix: str) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    id: str
    payload: JobPayload
    state: JobState = JobState.PENDING
    created_at: datetime = field(default_factory=_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Any] = None
    last_event: Optional[ProgressEvent] = None

    @property
    def kind(self) -> JobKind:
        return self.payload.kind

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass(frozen=True)
class QueueStatus:
    total: int
    pending: int
    running: int
    completed: int
    failed: int
    worker_active: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
