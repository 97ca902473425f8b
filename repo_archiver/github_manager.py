"""
GitHub repository sources: App installations and personal tokens

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

from typing import List, Optional

from github import Auth, Github, GithubIntegration

from .base import RepositoryRef, RepositorySource
from .errors import FetchFailed, NoGitHubInstallation


def _to_ref(repo, installation_id: Optional[str] = None) -> RepositoryRef:
    return RepositoryRef(
        owner=repo.owner.login,
        name=repo.name,
        full_name=repo.full_name,
        default_branch=repo.default_branch,
        installation_id=installation_id,
    )


class GitHubAppManager(RepositorySource):
    """Mints per-installation tokens for a GitHub App"""

    def __init__(self, app_id: str, private_key: str):
        super().__init__()
        if not app_id or not private_key:
            raise ValueError("GitHub App credentials not configured")

        # Keys stored in env files usually carry escaped newlines
        private_key = private_key.replace("\\n", "\n")
        self.app_id = app_id
        self.integration = GithubIntegration(auth=Auth.AppAuth(int(app_id), private_key))
        self.logger.debug(f"GitHub App {app_id} configured")

    def mint_fetch_token(self, installation_id: Optional[str]) -> str:
        if not installation_id:
            raise NoGitHubInstallation("No GitHub App installation for repository")

        self.logger.debug(f"[TOKEN] Generating token for installation {installation_id}")
        authorization = self.integration.get_access_token(int(installation_id))
        return authorization.token

    def get_repositories(self, installation_id: str) -> List[RepositoryRef]:
        installation = self.integration.get_app_installation(int(installation_id))
        repos = [_to_ref(repo, str(installation_id)) for repo in installation.get_repos()]
        self.logger.info(
            f"Installation {installation_id} - Final count: {len(repos)} repositories"
        )
        return repos

    def get_branches(self, installation_id: str, owner: str, repo: str) -> List[str]:
        client = self.integration.get_github_for_installation(int(installation_id))
        return [branch.name for branch in client.get_repo(f"{owner}/{repo}").get_branches()]


class StaticTokenSource(RepositorySource):
    """Repository source backed by one long-lived personal token"""

    def __init__(self, token: str):
        super().__init__()
        if not token:
            raise ValueError("GitHub token is required")
        self.token = token
        self.client = Github(auth=Auth.Token(token))

    def mint_fetch_token(self, installation_id: Optional[str]) -> str:
        return self.token

    def get_repositories(self, installation_id: Optional[str] = None) -> List[RepositoryRef]:
        return [_to_ref(repo) for repo in self.client.get_user().get_repos()]

    def resolve_repository(
        self, full_name: str, installation_ids: Optional[List[str]] = None
    ) -> RepositoryRef:
        try:
            return _to_ref(self.client.get_repo(full_name))
        except Exception as e:
            raise FetchFailed(full_name, e) from e

    def get_branches(self, installation_id: Optional[str], owner: str, repo: str) -> List[str]:
        return [branch.name for branch in self.client.get_repo(f"{owner}/{repo}").get_branches()]
