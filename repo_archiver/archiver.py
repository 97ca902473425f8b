"""
Workspace archiver producing .tar.xz archives

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

import logging
import re
import tarfile
import time
from pathlib import Path
from typing import Optional

from .errors import CompressionFailed

DEFAULT_COMPRESSION_LEVEL = 9
DEFAULT_ARCHIVE_TIMEOUT = 1800
ARCHIVE_SUFFIX = ".tar.xz"


class ArchiveTimeout(Exception):
    pass


class _DeadlineWriter:
    """File wrapper that aborts compressed output once the deadline passes"""

    def __init__(self, raw, deadline: float, timeout: float):
        self._raw = raw
        self._deadline = deadline
        self._timeout = timeout

    def write(self, data) -> int:
        if time.monotonic() > self._deadline:
            raise ArchiveTimeout(f"Archiving timed out after {self._timeout}s")
        return self._raw.write(data)

    def __getattr__(self, name):
        return getattr(self._raw, name)


def sanitize_archive_name(full_name: str) -> str:
    """owner/repo -> owner-repo, keeping only filesystem-safe characters"""
    name = full_name.replace("/", "-")
    return re.sub(r"[^A-Za-z0-9._-]", "_", name)


def validate_compression_level(level: int) -> int:
    if not isinstance(level, int) or isinstance(level, bool) or not 1 <= level <= 9:
        raise ValueError(f"Compression level must be between 1 and 9, got {level!r}")
    return level


class Archiver:
    def __init__(self, timeout: float = DEFAULT_ARCHIVE_TIMEOUT):
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)

    def compress(
        self,
        workspace: Path,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        archive_name: Optional[str] = None,
    ) -> Path:
        """
        Compress a workspace directory into a sibling .tar.xz archive.

        Args:
            workspace: Directory to archive; stored under its own name in the tarball
            compression_level: xz preset, 1-9
            archive_name: Archive base name, defaults to the workspace name

        Returns:
            Path to the created archive

        Raises:
            CompressionFailed: On any archiving error or when the timeout is exceeded
        """
        validate_compression_level(compression_level)
        workspace = Path(workspace)
        name = archive_name or workspace.name
        archive_path = workspace.parent / f"{name}{ARCHIVE_SUFFIX}"
        deadline = time.monotonic() + self.timeout

        def check_deadline(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
            if time.monotonic() > deadline:
                raise ArchiveTimeout(f"Archiving timed out after {self.timeout}s")
            return tarinfo

        self.logger.info(
            f"[ARCHIVE] Compressing {workspace} (level {compression_level})..."
        )
        try:
            if not workspace.is_dir():
                raise FileNotFoundError(f"Workspace not found: {workspace}")
            # The filter checks between members, the writer within large members
            with open(archive_path, "wb") as raw:
                output = _DeadlineWriter(raw, deadline, self.timeout)
                with tarfile.open(
                    mode="w:xz", fileobj=output, preset=compression_level
                ) as tar:
                    tar.add(workspace, arcname=workspace.name, filter=check_deadline)
        except (OSError, tarfile.TarError, ArchiveTimeout) as e:
            self.logger.error(f"[ERROR] Compression failed for {workspace}: {e}")
            if archive_path.exists():
                try:
                    archive_path.unlink()
                except OSError:
                    self.logger.warning(
                        f"[CLEANUP] Failed to remove partial archive {archive_path}"
                    )
            raise CompressionFailed(str(e)) from e

        file_size = archive_path.stat().st_size
        self.logger.info(
            f"[ARCHIVE] Archive created: {archive_path} ({file_size / 1024 / 1024:.2f} MB)"
        )
        return archive_path
