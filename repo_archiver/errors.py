"""
Error taxonomy for backup runs and the job queue

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


class BackupError(Exception):
    """Base class for every failure raised by a backup run."""


class NoGitHubInstallation(BackupError):
    pass


class NoDestinationConfigured(BackupError):
    def __init__(self, message: str = "No S3 configurations found"):
        super().__init__(message)


class FetchFailed(BackupError):
    def __init__(self, repo: str, cause):
        self.repo = repo
        self.cause = cause
        super().__init__(f"Failed to clone {repo}: {cause}")


class CompressionFailed(BackupError):
    def __init__(self, cause):
        self.cause = cause
        super().__init__(f"Compression failed: {cause}")


class UploadFailed(BackupError):
    def __init__(self, destination: str, cause):
        self.destination = destination
        self.cause = cause
        super().__init__(f"Upload to {destination} failed: {cause}")


class WorkspaceError(BackupError):
    def __init__(self, cause):
        self.cause = cause
        super().__init__(f"Workspace error: {cause}")


class JobNotFound(BackupError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")
