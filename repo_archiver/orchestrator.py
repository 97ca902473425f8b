"""
Backup orchestration: fetch, archive, upload and clean up

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

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from .archiver import DEFAULT_COMPRESSION_LEVEL, Archiver, sanitize_archive_name
from .base import DestinationCredential, Phase, ProgressEvent, RepositoryRef, RepositorySource
from .errors import BackupError, FetchFailed, NoDestinationConfigured, NoGitHubInstallation
from .fetcher import RepositoryFetcher
from .s3_uploader import S3Uploader
from .workspace import WorkspaceManager

ProgressSink = Callable[[ProgressEvent], None]
DestinationResolver = Callable[[str], List[DestinationCredential]]


def pick_default_destinations(
    destinations: List[DestinationCredential],
) -> List[DestinationCredential]:
    """Default-flagged destinations, else the first one registered"""
    defaults = [d for d in destinations if d.is_default]
    if defaults:
        return defaults
    return destinations[:1]


@dataclass
class BackupResult:
    key: str
    archive_name: str
    repositories: List[str] = field(default_factory=list)
    destinations: List[str] = field(default_factory=list)


class _ProgressReporter:
    def __init__(self, sink: Optional[ProgressSink], label: str):
        self.sink = sink
        self.label = label

    def emit(self, phase: Phase, message: str, **kwargs) -> None:
        event = ProgressEvent(phase=phase, message=message, **kwargs)
        logger.info(f"[BACKUP] [{self.label}] {phase.value}: {message}")
        if self.sink is None:
            return
        try:
            self.sink(event)
        except Exception as e:
            logger.warning(f"[BACKUP] Progress sink failed for {self.label}: {e}")


class BackupOrchestrator:
    def __init__(
        self,
        source: RepositorySource,
        uploader: S3Uploader,
        workspace: Optional[WorkspaceManager] = None,
        fetcher: Optional[RepositoryFetcher] = None,
        archiver: Optional[Archiver] = None,
        default_destinations: Optional[DestinationResolver] = None,
    ):
        self.source = source
        self.uploader = uploader
        self.workspace = workspace or WorkspaceManager()
        self.fetcher = fetcher or RepositoryFetcher()
        self.archiver = archiver or Archiver()
        self.default_destinations = default_destinations

    def run_single(
        self,
        user_id: str,
        repository: RepositoryRef,
        destinations: Optional[List[DestinationCredential]] = None,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        destination_prefix: Optional[str] = None,
        progress_sink: Optional[ProgressSink] = None,
    ) -> BackupResult:
        """Back up one repository into an archive named after it"""
        return self._run(
            user_id=user_id,
            repositories=[repository],
            destinations=destinations,
            compression_level=compression_level,
            destination_prefix=destination_prefix,
            archive_name=sanitize_archive_name(repository.full_name),
            reporter=_ProgressReporter(progress_sink, repository.full_name),
            init_message=f"Initializing backup for repository {repository.full_name}...",
            summary=lambda count: (
                f"Backup completed successfully! Repository {repository.full_name} "
                f"backed up to {count} S3 storage(s)."
            ),
        )

    def run_group(
        self,
        user_id: str,
        repositories: List[RepositoryRef],
        destination_prefix: Optional[str],
        destinations: Optional[List[DestinationCredential]] = None,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        progress_sink: Optional[ProgressSink] = None,
        archive_name: Optional[str] = None,
    ) -> BackupResult:
        """
        Back up several repositories into one archive under a shared prefix.

        Repositories are fetched strictly in the given order. The first
        fetch failure aborts the whole run: nothing is archived or uploaded
        and the remaining repositories are never fetched.
        """
        return self._run(
            user_id=user_id,
            repositories=list(repositories),
            destinations=destinations,
            compression_level=compression_level,
            destination_prefix=destination_prefix,
            archive_name=archive_name,
            reporter=_ProgressReporter(progress_sink, f"group of {len(repositories)}"),
            init_message=f"Initializing group backup of {len(repositories)} repositories...",
            summary=lambda count: (
                f"Backup completed successfully! {len(repositories)} repositories "
                f"backed up to {count} S3 storage(s)."
            ),
        )

    def run_all(
        self,
        user_id: str,
        installation_ids: List[str],
        destinations: Optional[List[DestinationCredential]] = None,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        progress_sink: Optional[ProgressSink] = None,
    ) -> BackupResult:
        """Back up every repository visible to the given installations"""
        reporter = _ProgressReporter(progress_sink, user_id)
        try:
            if not installation_ids:
                raise NoGitHubInstallation("No GitHub App installations found for user")

            repositories = []
            for installation_id in installation_ids:
                try:
                    repositories.extend(self.source.get_repositories(installation_id))
                except Exception as e:
                    logger.error(
                        f"[BACKUP] Failed to get repositories for installation {installation_id}: {e}"
                    )
            if not repositories:
                raise BackupError("No repositories found to backup")
        except BackupError as e:
            reporter.emit(Phase.INIT, "Initializing backup process...")
            reporter.emit(Phase.ERROR, f"Backup failed: {e}")
            raise

        return self._run(
            user_id=user_id,
            repositories=repositories,
            destinations=destinations,
            compression_level=compression_level,
            destination_prefix=None,
            archive_name=None,
            reporter=reporter,
            init_message="Initializing backup process...",
            summary=lambda count: (
                f"Backup completed successfully! {len(repositories)} repositories "
                f"backed up to {count} S3 storage(s)."
            ),
        )

    def _resolve_destinations(
        self, user_id: str, destinations: Optional[List[DestinationCredential]]
    ) -> List[DestinationCredential]:
        resolved = list(destinations or [])
        if not resolved and self.default_destinations is not None:
            resolved = list(self.default_destinations(user_id) or [])
        if not resolved:
            raise NoDestinationConfigured()
        return resolved

    def _mint_token(self, repo: RepositoryRef) -> str:
        try:
            return self.source.mint_fetch_token(repo.installation_id)
        except BackupError:
            raise
        except Exception as e:
            raise FetchFailed(repo.full_name, f"Could not mint fetch token: {e}") from e

    def _run(
        self,
        user_id: str,
        repositories: List[RepositoryRef],
        destinations: Optional[List[DestinationCredential]],
        compression_level: int,
        destination_prefix: Optional[str],
        archive_name: Optional[str],
        reporter: _ProgressReporter,
        init_message: str,
        summary: Callable[[int], str],
    ) -> BackupResult:
        workspace_path: Optional[Path] = None
        archive_path: Optional[Path] = None

        try:
            reporter.emit(Phase.INIT, init_message)
            if not repositories:
                raise BackupError("No repositories found to backup")

            resolved = self._resolve_destinations(user_id, destinations)
            workspace_path = self.workspace.create(user_id)

            total = len(repositories)
            for index, repo in enumerate(repositories):
                token = self._mint_token(repo)
                reporter.emit(
                    Phase.CLONE,
                    f"Cloning {repo.full_name} (full backup with sources)",
                    progress=round((index + 1) / total * 100),
                    current_repo=index + 1,
                    total_repos=total,
                )
                self.fetcher.fetch(repo, token, workspace_path)

            reporter.emit(Phase.COMPRESS, "Compressing backup data...")
            archive_path = self.archiver.compress(
                workspace_path, compression_level, archive_name
            )

            reporter.emit(Phase.UPLOAD, "Uploading to S3 storage(s)...")
            key = self.uploader.upload(
                archive_path, resolved, user_id, destination_prefix
            )

            reporter.emit(Phase.CLEANUP, "Cleaning up temporary files...")
        except Exception as e:
            reporter.emit(Phase.ERROR, f"Backup failed: {e}")
            raise
        finally:
            self.workspace.cleanup(workspace_path)
            self.workspace.remove_archive(archive_path)

        reporter.emit(Phase.COMPLETE, summary(len(resolved)))
        return BackupResult(
            key=key,
            archive_name=archive_path.name,
            repositories=[repo.full_name for repo in repositories],
            destinations=[d.name for d in resolved],
        )
