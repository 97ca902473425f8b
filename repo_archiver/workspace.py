"""
Scratch workspace management for backup runs

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
import os
import shutil
import stat
import time
from pathlib import Path
from typing import Optional, Union

from .errors import WorkspaceError

DEFAULT_WORKSPACE_ROOT = "/tmp/github-backups"
REMOVE_ATTEMPTS = 3
REMOVE_RETRY_DELAY = 0.5


def _restore_write_access(path: Path) -> None:
    for directory, _, _ in os.walk(path):
        try:
            os.chmod(directory, os.stat(directory).st_mode | stat.S_IWUSR)
        except OSError:
            continue


def remove_tree(path: Path, logger: logging.Logger, attempts: int = REMOVE_ATTEMPTS) -> bool:
    """
    Delete a workspace tree.

    A clone or tar member may still be settling when cleanup runs, and git
    can leave directories without the write bit, so failed attempts regain
    write access and try again after a growing delay.
    """
    path = Path(path)
    for attempt in range(1, attempts + 1):
        if not path.exists():
            return True
        try:
            shutil.rmtree(path)
            return True
        except OSError as e:
            if attempt == attempts:
                logger.warning(f"[CLEANUP] Giving up on {path} after {attempts} attempts: {e}")
                return False
            logger.debug(f"[CLEANUP] Attempt {attempt} removing {path} failed: {e}")
            _restore_write_access(path)
            time.sleep(REMOVE_RETRY_DELAY * attempt)
    return not path.exists()


class WorkspaceManager:
    def __init__(self, root: Union[str, Path] = DEFAULT_WORKSPACE_ROOT):
        """
        Initialize workspace manager
        Args:
            root: Scratch root shared by all runs; each run gets its own subdirectory
        """
        self.root = Path(root)
        self.logger = logging.getLogger(self.__class__.__name__)

    def create(self, user_id: str) -> Path:
        """
        Create a fresh workspace named {user_id}-{timestamp_ms}.
        Never reuses an existing directory: on a name collision the
        timestamp is bumped until mkdir succeeds.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(
                f"Failed to create workspace root {self.root}: {e}"
            ) from e

        timestamp = int(time.time() * 1000)
        while True:
            path = self.root / f"{user_id}-{timestamp}"
            try:
                path.mkdir()
            except FileExistsError:
                timestamp += 1
                continue
            except OSError as e:
                raise WorkspaceError(f"Failed to create workspace {path}: {e}") from e
            break

        self.logger.info(f"[WORKSPACE] Created workspace: {path}")
        return path

    def cleanup(self, path: Optional[Path]) -> bool:
        """Remove a workspace directory. Errors are logged, never raised."""
        if path is None:
            return True
        try:
            removed = remove_tree(Path(path), self.logger)
        except Exception as e:
            self.logger.warning(f"[CLEANUP] Error cleaning up workspace {path}: {e}")
            return False
        if removed:
            self.logger.info(f"[CLEANUP] Removed workspace: {path}")
        return removed

    def remove_archive(self, path: Optional[Path]) -> bool:
        if path is None:
            return True
        try:
            Path(path).unlink()
            self.logger.info(f"[CLEANUP] Removed archive: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"[CLEANUP] Failed to remove archive {path}: {e}")
            return False
        return True

    def cleanup_stale(self) -> int:
        """Clean up workspaces and archives left behind by a previous process"""
        if not self.root.exists():
            return 0

        stale_count = 0
        for item in self.root.iterdir():
            if item.is_dir():
                if remove_tree(item, self.logger):
                    stale_count += 1
                    self.logger.debug(f"[CLEANUP] Removed stale workspace: {item}")
            elif item.name.endswith(".tar.xz"):
                if self.remove_archive(item):
                    stale_count += 1

        if stale_count > 0:
            self.logger.info(
                f"[CLEANUP] Removed {stale_count} stale workspace entries from previous runs"
            )
        return stale_count
