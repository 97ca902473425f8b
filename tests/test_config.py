"""
Tests for settings and destination files

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

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from repo_archiver.config import Settings, load_destinations, select_destinations

ENV_VARS = (
    "WORKSPACE_ROOT",
    "BACKUP_NAMESPACE",
    "COMPRESSION_LEVEL",
    "CLONE_TIMEOUT",
    "BRANCH_SYNC_TIMEOUT",
    "ARCHIVE_TIMEOUT",
    "WORKER_PAUSE",
    "GITHUB_HOST",
    "LOG_FILE",
)


@pytest.fixture
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    with patch("repo_archiver.config.load_dotenv"):
        yield monkeypatch


def _write(tmpdir, text):
    path = Path(tmpdir) / "destinations.yml"
    path.write_text(text)
    return path


class TestSettings:
    """Tests for Settings.from_env"""

    def test_defaults(self, clean_env):
        """Test defaults when nothing is configured"""
        settings = Settings.from_env()

        assert settings.workspace_root == "/tmp/github-backups"
        assert settings.namespace == "github-backups"
        assert settings.compression_level == 9
        assert settings.clone_timeout == 300
        assert settings.branch_sync_timeout == 180
        assert settings.archive_timeout == 1800
        assert settings.worker_pause == 0.5
        assert settings.github_host == "github.com"

    def test_overrides(self, clean_env):
        """Test environment variables override defaults"""
        clean_env.setenv("WORKSPACE_ROOT", "/var/tmp/archiver")
        clean_env.setenv("CLONE_TIMEOUT", "60")
        clean_env.setenv("WORKER_PAUSE", "0")
        clean_env.setenv("GITHUB_HOST", "git.example.com")

        settings = Settings.from_env()

        assert settings.workspace_root == "/var/tmp/archiver"
        assert settings.clone_timeout == 60
        assert settings.worker_pause == 0.0
        assert settings.github_host == "git.example.com"

    def test_compression_level_clamped(self, clean_env):
        """Test out-of-range levels are clamped to 1-9"""
        clean_env.setenv("COMPRESSION_LEVEL", "15")
        assert Settings.from_env().compression_level == 9
        clean_env.setenv("COMPRESSION_LEVEL", "0")
        assert Settings.from_env().compression_level == 1

    def test_invalid_number_falls_back(self, clean_env):
        """Test non-numeric values fall back to defaults"""
        clean_env.setenv("ARCHIVE_TIMEOUT", "soon")
        assert Settings.from_env().archive_timeout == 1800


class TestLoadDestinations:
    """Tests for load_destinations"""

    def test_load(self):
        """Test destinations are parsed with defaults"""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(
                tmpdir,
                """
destinations:
  - name: primary
    endpoint: https://s3.example.com
    region: eu-west-1
    bucket: backups
    access_key_id: enc-access
    secret_access_key: enc-secret
    force_path_style: true
    is_default: true
  - name: offsite
    bucket: offsite-backups
    access_key_id: enc-access-2
    secret_access_key: enc-secret-2
""",
            )
            destinations = load_destinations(path)

        assert [d.name for d in destinations] == ["primary", "offsite"]
        assert destinations[0].force_path_style is True
        assert destinations[0].is_default is True
        assert destinations[1].endpoint is None
        assert destinations[1].region == "us-east-1"

    def test_missing_keys(self):
        """Test destinations without credentials are rejected"""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(tmpdir, "destinations:\n  - name: broken\n    bucket: b\n")
            with pytest.raises(ValueError, match="access_key_id"):
                load_destinations(path)

    def test_malformed(self):
        """Test a file without a destinations list is rejected"""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(tmpdir, "something: else\n")
            with pytest.raises(ValueError, match="destinations"):
                load_destinations(path)

    def test_missing_file(self):
        """Test a missing file raises FileNotFoundError"""
        with pytest.raises(FileNotFoundError):
            load_destinations("/nonexistent/destinations.yml")

    def test_select_destinations(self, make_destination):
        """Test destinations are picked by name in the requested order"""
        dests = [make_destination("a"), make_destination("b")]

        assert select_destinations(dests) == dests
        assert [d.name for d in select_destinations(dests, ["b", "a"])] == ["b", "a"]
        with pytest.raises(ValueError, match="Unknown destination"):
            select_destinations(dests, ["c"])
