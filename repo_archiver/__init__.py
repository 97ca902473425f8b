"""
repo-archiver - GitHub repository backups to S3-compatible storage

Mirrors repositories with every ref, packs them into xz-compressed
tarballs and uploads them to one or more S3 destinations through an
in-memory single-worker job queue.

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

__version__ = "1.0.0"
__license__ = "Apache-2.0"
__description__ = "Repository backup jobs: mirror, archive and upload GitHub repositories to S3"

from .base import DestinationCredential, Phase, ProgressEvent, RepositoryRef, RepositorySource
from .job_queue import JobQueue
from .jobs import GroupedRepositoryJob, Job, JobState, QueueStatus, SingleRepositoryJob
from .orchestrator import BackupOrchestrator, BackupResult
from .s3_uploader import S3Uploader

__all__ = [
    "BackupOrchestrator",
    "BackupResult",
    "DestinationCredential",
    "GroupedRepositoryJob",
    "Job",
    "JobQueue",
    "JobState",
    "Phase",
    "ProgressEvent",
    "QueueStatus",
    "RepositoryRef",
    "RepositorySource",
    "S3Uploader",
    "SingleRepositoryJob",
]
