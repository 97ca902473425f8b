"""
Repository fetcher: bare mirror plus working checkout for one repository

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

import json
import logging
import os
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .base import RepositoryRef
from .errors import FetchFailed

DEFAULT_CLONE_TIMEOUT = 300
DEFAULT_BRANCH_SYNC_TIMEOUT = 180


def build_clone_url(
    repo: RepositoryRef, token: Optional[str], host: str = "github.com"
) -> str:
    """Clone URL carrying the installation token as x-access-token basic auth"""
    if repo.clone_url:
        if token and repo.clone_url.startswith("https://"):
            return repo.clone_url.replace(
                "https://", f"https://x-access-token:{token}@", 1
            )
        return repo.clone_url
    if token:
        return f"https://x-access-token:{token}@{host}/{repo.full_name}.git"
    return f"https://{host}/{repo.full_name}.git"


def manifest_name(repo: RepositoryRef) -> str:
    return f"README_BACKUP-{repo.name}.json"


class RepositoryFetcher:
    def __init__(
        self,
        host: str = "github.com",
        clone_timeout: int = DEFAULT_CLONE_TIMEOUT,
        branch_sync_timeout: int = DEFAULT_BRANCH_SYNC_TIMEOUT,
    ):
        self.host = host
        self.clone_timeout = clone_timeout
        self.branch_sync_timeout = branch_sync_timeout
        self.logger = logging.getLogger(self.__class__.__name__)

    def fetch(self, repo: RepositoryRef, token: Optional[str], workspace: Path) -> Path:
        """
        Mirror a repository into the workspace.

        Produces {owner}/{name}.git (bare mirror, all refs), {owner}/{name}/
        (working checkout with submodules) and a JSON manifest next to them.

        Args:
            repo: Repository to fetch
            token: Short-lived fetch token, never cached between runs
            workspace: Run workspace directory

        Returns:
            Path of the working checkout

        Raises:
            FetchFailed: If either clone fails or times out
        """
        repo_path = Path(workspace) / repo.owner / repo.name
        mirror_path = repo_path.parent / f"{repo.name}.git"
        clone_url = build_clone_url(repo, token, self.host)
        public_url = build_clone_url(repo, None, self.host)

        try:
            repo_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FetchFailed(repo.full_name, e) from e

        self.logger.info(f"[CLONE] Mirroring {repo.full_name}...")
        self._run_git(
            ["clone", "--mirror", clone_url, str(mirror_path)],
            repo,
            token,
            self.clone_timeout,
        )
        self._strip_credentials(repo, mirror_path, public_url, token)

        self.logger.info(f"[CLONE] Cloning working copy of {repo.full_name}...")
        self._run_git(
            ["clone", "--recurse-submodules", clone_url, str(repo_path)],
            repo,
            token,
            self.clone_timeout,
        )

        self._track_remote_branches(repo, repo_path)
        self._strip_credentials(repo, repo_path, public_url, token)
        self._write_manifest(repo, repo_path.parent)

        return repo_path

    def _strip_credentials(
        self, repo: RepositoryRef, path: Path, public_url: str, token: Optional[str]
    ) -> None:
        """Point origin at the token-free URL so the archived config holds no secret"""
        self._run_git(
            ["remote", "set-url", "origin", public_url],
            repo,
            token,
            self.branch_sync_timeout,
            cwd=path,
        )

    def _run_git(
        self,
        args: List[str],
        repo: RepositoryRef,
        token: Optional[str],
        timeout: int,
        cwd: Optional[Path] = None,
    ) -> subprocess.CompletedProcess:
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
        try:
            # Use DEVNULL for stdout to avoid memory buffering of git progress output
            result = subprocess.run(
                ["git"] + args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                cwd=str(cwd) if cwd else None,
                env=env,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            self.logger.error(
                f"[ERROR] git {args[0]} timed out after {timeout}s for {repo.full_name}"
            )
            raise FetchFailed(
                repo.full_name, f"git {args[0]} timed out after {timeout}s"
            ) from e
        except OSError as e:
            raise FetchFailed(repo.full_name, e) from e

        if result.returncode != 0:
            stderr = self._redact(result.stderr or "", token)[:500]
            self.logger.error(f"[ERROR] git {args[0]} failed for {repo.full_name}: {stderr}")
            raise FetchFailed(repo.full_name, stderr.strip() or f"exit code {result.returncode}")

        return result

    def _track_remote_branches(self, repo: RepositoryRef, repo_path: Path) -> None:
        """Create local tracking branches for every remote branch (best effort)"""
        try:
            subprocess.run(
                ["git", "fetch", "--all"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                cwd=str(repo_path),
                timeout=self.branch_sync_timeout,
                check=True,
            )
            refs = subprocess.run(
                ["git", "for-each-ref", "--format=%(refname:short)", "refs/remotes/origin"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=str(repo_path),
                timeout=self.branch_sync_timeout,
                check=True,
            )
            created = 0
            for remote in refs.stdout.split():
                if not remote.startswith("origin/") or remote == "origin/HEAD":
                    continue
                branch = remote[len("origin/"):]
                result = subprocess.run(
                    ["git", "branch", "--track", branch, remote],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    cwd=str(repo_path),
                    timeout=self.branch_sync_timeout,
                )
                if result.returncode == 0:
                    created += 1
            self.logger.debug(
                f"[CLONE] Created {created} tracking branches for {repo.full_name}"
            )
        except (subprocess.SubprocessError, OSError) as e:
            self.logger.warning(
                f"[WARN] Could not fetch all branches for {repo.full_name}: {e}"
            )

    def _write_manifest(self, repo: RepositoryRef, owner_dir: Path) -> Path:
        default_branch = repo.default_branch or "main"
        manifest_file = owner_dir / manifest_name(repo)
        backup_info = {
            "repository": repo.full_name,
            "backup_date": datetime.now(timezone.utc).isoformat(),
            "default_branch": default_branch,
            "backup_type": "full_with_sources",
            "structure": {
                f"{repo.name}.git": "Bare repository with complete Git history (all branches, tags, refs)",
                f"{repo.name}/": "Working directory with source files and all branches",
                manifest_file.name: "This file - backup metadata",
            },
            "restore_instructions": {
                "quick_restore": f"cd {repo.name} && git checkout {default_branch}",
                "full_restore": f"git clone ./{repo.name}.git restored_{repo.name}",
                "list_branches": f"cd {repo.name} && git branch -a",
                "list_tags": f"cd {repo.name}.git && git tag -l",
            },
        }

        try:
            manifest_file.write_text(json.dumps(backup_info, indent=2))
        except OSError as e:
            raise FetchFailed(repo.full_name, f"Failed to write manifest: {e}") from e
        return manifest_file

    @staticmethod
    def _redact(text: str, token: Optional[str]) -> str:
        if token:
            text = text.replace(token, "[REDACTED]")
        return text
