"""
Tests for GitHub repository sources

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

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from repo_archiver.errors import FetchFailed, NoGitHubInstallation
from repo_archiver.github_manager import GitHubAppManager, StaticTokenSource


def _gh_repo(full_name, default_branch="main"):
    owner, name = full_name.split("/")
    return SimpleNamespace(
        owner=SimpleNamespace(login=owner), name=name, full_name=full_name, default_branch=default_branch
    )


@pytest.fixture
def integration():
    with patch("repo_archiver.github_manager.GithubIntegration") as cls, patch(
        "repo_archiver.github_manager.Auth"
    ) as auth:
        yield cls, auth


class TestGitHubAppManagerInit:
    """Tests for GitHubAppManager initialisation"""

    def test_missing_credentials(self):
        """Test initialisation fails without app id or key"""
        with pytest.raises(ValueError, match="not configured"):
            GitHubAppManager(app_id="", private_key="key")
        with pytest.raises(ValueError):
            GitHubAppManager(app_id="123", private_key="")

    def test_escaped_newlines(self, integration):
        """Test escaped newlines in the private key are restored"""
        cls, auth = integration
        GitHubAppManager(app_id="123", private_key="-----BEGIN-----\\nabc\\n-----END-----")

        auth.AppAuth.assert_called_once_with(123, "-----BEGIN-----\nabc\n-----END-----")
        cls.assert_called_once_with(auth=auth.AppAuth.return_value)


class TestGitHubAppManagerTokens:
    """Tests for installation tokens and listings"""

    def test_mint_fetch_token(self, integration):
        """Test a token is minted for the installation"""
        cls, _ = integration
        cls.return_value.get_access_token.return_value = SimpleNamespace(token="ghs_installation")
        manager = GitHubAppManager(app_id="123", private_key="key")

        assert manager.mint_fetch_token("987") == "ghs_installation"
        cls.return_value.get_access_token.assert_called_once_with(987)

    def test_mint_without_installation(self, integration):
        """Test minting without an installation raises NoGitHubInstallation"""
        manager = GitHubAppManager(app_id="123", private_key="key")
        with pytest.raises(NoGitHubInstallation):
            manager.mint_fetch_token(None)

    def test_get_repositories(self, integration):
        """Test installation repositories map to references"""
        cls, _ = integration
        installation = MagicMock()
        installation.get_repos.return_value = [_gh_repo("org/a"), _gh_repo("org/b", "develop")]
        cls.return_value.get_app_installation.return_value = installation
        manager = GitHubAppManager(app_id="123", private_key="key")

        repos = manager.get_repositories("987")

        assert [r.full_name for r in repos] == ["org/a", "org/b"]
        assert repos[1].default_branch == "develop"
        assert all(r.installation_id == "987" for r in repos)

    def test_resolve_repository(self, integration):
        """Test resolving searches the user's installations"""
        cls, _ = integration
        installation = MagicMock()
        installation.get_repos.return_value = [_gh_repo("org/a")]
        cls.return_value.get_app_installation.return_value = installation
        manager = GitHubAppManager(app_id="123", private_key="key")

        assert manager.resolve_repository("org/a", ["987"]).installation_id == "987"
        with pytest.raises(FetchFailed):
            manager.resolve_repository("org/missing", ["987"])

    def test_get_branches(self, integration):
        """Test branch names are listed through the installation client"""
        cls, _ = integration
        client = cls.return_value.get_github_for_installation.return_value
        client.get_repo.return_value.get_branches.return_value = [
            SimpleNamespace(name="main"),
            SimpleNamespace(name="feature"),
        ]
        manager = GitHubAppManager(app_id="123", private_key="key")

        assert manager.get_branches("987", "org", "a") == ["main", "feature"]
        client.get_repo.assert_called_once_with("org/a")


class TestStaticTokenSource:
    """Tests for StaticTokenSource"""

    def test_empty_token(self):
        """Test initialisation fails with empty token"""
        with pytest.raises(ValueError):
            StaticTokenSource("")

    def test_token_and_resolve(self):
        """Test the static token is handed out and repositories resolve directly"""
        with patch("repo_archiver.github_manager.Github") as github:
            github.return_value.get_repo.return_value = _gh_repo("org/a")
            source = StaticTokenSource("ghp_static")

            assert source.mint_fetch_token(None) == "ghp_static"
            repo = source.resolve_repository("org/a")
            assert repo.full_name == "org/a"
            assert repo.installation_id is None

    def test_resolve_failure(self):
        """Test lookup errors become FetchFailed"""
        with patch("repo_archiver.github_manager.Github") as github:
            github.return_value.get_repo.side_effect = RuntimeError("404 Not Found")
            source = StaticTokenSource("ghp_static")

            with pytest.raises(FetchFailed, match="404"):
                source.resolve_repository("org/missing")
