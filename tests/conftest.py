"""
Shared fixtures for repo-archiver tests

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

import subprocess
import tempfile
from pathlib import Path

import pytest

from repo_archiver.base import DestinationCredential, RepositoryRef, RepositorySource
from repo_archiver.crypto import CredentialCipher


def _git(args, cwd):
    subprocess.run(["git"] + args, cwd=cwd, capture_output=True, check=True)


def make_git_repo(path: Path) -> Path:
    """Initialise a git repository with a main and a feature branch"""
    path.mkdir(parents=True)
    _git(["init"], path)
    _git(["config", "user.email", "test@test.com"], path)
    _git(["config", "user.name", "Test User"], path)
    _git(["checkout", "-b", "main"], path)

    (path / "README.md").write_text("# Test Repository\n\nThis is a test.")
    _git(["add", "README.md"], path)
    _git(["commit", "-m", "Initial commit"], path)

    _git(["checkout", "-b", "feature"], path)
    (path / "feature.txt").write_text("feature work\n")
    _git(["add", "feature.txt"], path)
    _git(["commit", "-m", "Feature commit"], path)
    _git(["checkout", "main"], path)
    return path


class StubSource(RepositorySource):
    """Repository source handing out a fixed token"""

    def __init__(self, token="test-token", repositories=None):
        super().__init__()
        self.token = token
        self.repositories = repositories or {}
        self.minted = []

    def mint_fetch_token(self, installation_id):
        self.minted.append(installation_id)
        return self.token

    def get_repositories(self, installation_id):
        if installation_id not in self.repositories:
            raise RuntimeError(f"installation {installation_id} unavailable")
        return list(self.repositories[installation_id])


@pytest.fixture
def local_git_repo():
    """Create a local git repository for testing"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield make_git_repo(Path(tmpdir) / "test-repo")


@pytest.fixture
def cipher():
    return CredentialCipher("test-encryption-secret")


@pytest.fixture
def make_destination(cipher):
    def factory(name="primary", is_default=False, bucket="backups"):
        return DestinationCredential(
            name=name,
            endpoint="https://s3.example.com",
            region="us-east-1",
            bucket=bucket,
            access_key_id=cipher.encrypt(f"AKIA-{name}"),
            secret_access_key=cipher.encrypt(f"secret-{name}"),
            is_default=is_default,
        )

    return factory


@pytest.fixture
def local_repo_ref(local_git_repo):
    return RepositoryRef(
        owner="local",
        name="test-repo",
        full_name="local/test-repo",
        default_branch="main",
        installation_id="1",
        clone_url=str(local_git_repo),
    )
