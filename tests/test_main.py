"""
Tests for the command line entry point and logging setup

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

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from loguru import logger

import repo_archiver.main as main_module
from repo_archiver.crypto import CredentialCipher
from repo_archiver.main import build_parser, main, setup_logging
from repo_archiver.s3_uploader import S3Uploader

from conftest import StubSource

ENCRYPTION_KEY = "cli-test-secret"


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run each test from a scratch directory with a clean environment"""
    monkeypatch.chdir(tmp_path)
    for var in ("GITHUB_APP_ID", "GITHUB_APP_PRIVATE_KEY", "GITHUB_APP_PRIVATE_KEY_PATH", "LOG_FILE"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("ENCRYPTION_KEY", ENCRYPTION_KEY)
    monkeypatch.setenv("WORKSPACE_ROOT", str(tmp_path / "work"))
    monkeypatch.setenv("WORKER_PAUSE", "0")
    monkeypatch.setattr("repo_archiver.config.load_dotenv", lambda: None)
    yield tmp_path
    logger.remove()
    logger.add(sys.stderr, level="INFO")


@pytest.fixture
def destinations_file(tmp_path):
    cipher = CredentialCipher(ENCRYPTION_KEY)
    path = tmp_path / "destinations.yml"
    path.write_text(
        "destinations:\n"
        "  - name: primary\n"
        "    bucket: backups\n"
        f"    access_key_id: {cipher.encrypt('AKIA')}\n"
        f"    secret_access_key: {cipher.encrypt('secret')}\n"
        "    is_default: true\n"
    )
    return path


@pytest.fixture
def s3_client(monkeypatch):
    client = MagicMock()

    def uploader(cipher, namespace="github-backups"):
        return S3Uploader(cipher, namespace, client_factory=lambda *a: client, show_progress=False)

    monkeypatch.setattr(main_module, "S3Uploader", uploader)
    return client


class TestSetupLogging:
    """Tests for setup_logging function"""

    def test_setup_logging_default(self):
        """Test default logging setup"""
        result = setup_logging()
        assert result is not None
        assert Path("logs").exists()

    def test_setup_logging_custom_file(self):
        """Test custom log file name"""
        setup_logging(verbose=True, log_file="custom.log")
        assert Path("logs/custom.log").exists()

    def test_standard_logging_routed(self):
        """Test component loggers reach the loguru file sink"""
        import logging

        setup_logging(log_file="routed.log")
        logging.getLogger("RepositoryFetcher").info("[CLONE] routed message")
        logger.complete()

        assert "routed message" in Path("logs/routed.log").read_text()


class TestParser:
    """Tests for argument parsing"""

    def test_group_arguments(self):
        """Test group backups accept prefix and destinations"""
        args = build_parser().parse_args(
            ["org/a", "org/b", "--group", "--prefix", "backups/team", "--use", "primary", "--compression-level", "3"]
        )
        assert args.repos == ["org/a", "org/b"]
        assert args.group is True
        assert args.prefix == "backups/team"
        assert args.use == ["primary"]
        assert args.compression_level == 3

    def test_rejects_bad_compression_level(self):
        """Test levels outside 1-9 are refused"""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["org/a", "--compression-level", "12"])


class TestMain:
    """Tests for main()"""

    def test_encrypt(self, capsys):
        """Test --encrypt prints a value decryptable with ENCRYPTION_KEY"""
        assert main(["--encrypt", "AKIAEXAMPLE"]) == 0
        token = capsys.readouterr().out.strip()
        assert CredentialCipher(ENCRYPTION_KEY).decrypt(token) == "AKIAEXAMPLE"

    def test_destinations_required(self):
        """Test backups without a destinations file are refused"""
        with pytest.raises(SystemExit):
            main(["org/a"])

    def test_group_requires_prefix(self, destinations_file):
        """Test --group without --prefix is refused"""
        with pytest.raises(SystemExit):
            main(["org/a", "--group", "--destinations", str(destinations_file)])

    def test_unknown_destination(self, destinations_file):
        """Test naming an unknown destination fails"""
        assert main(["org/a", "--destinations", str(destinations_file), "--use", "missing"]) == 1

    def test_backup_runs_through_queue(self, destinations_file, s3_client, local_repo_ref, monkeypatch):
        """Test repositories are resolved, queued and uploaded"""
        source = StubSource(repositories={"1": [local_repo_ref]})
        monkeypatch.setattr(main_module, "build_source", lambda settings: source)

        code = main(
            ["local/test-repo", "--destinations", str(destinations_file), "--installation", "1", "--compression-level", "1"]
        )

        assert code == 0
        s3_client.upload_file.assert_called_once()
        _, bucket, key = s3_client.upload_file.call_args[0]
        assert bucket == "backups"
        assert key.startswith("github-backups/cli/")
        assert key.endswith("/local-test-repo.tar.xz")

    def test_failed_job_exit_code(self, destinations_file, s3_client, monkeypatch, tmp_path):
        """Test a failing job makes the command exit 1"""
        from repo_archiver.base import RepositoryRef

        broken = RepositoryRef.from_full_name(
            "local/broken", installation_id="1", clone_url=str(tmp_path / "nope")
        )
        monkeypatch.setattr(
            main_module, "build_source", lambda settings: StubSource(repositories={"1": [broken]})
        )

        code = main(["local/broken", "--destinations", str(destinations_file), "--installation", "1"])

        assert code == 1
        s3_client.upload_file.assert_not_called()

    def test_health(self, destinations_file, s3_client):
        """Test --health checks each destination"""
        assert main(["--health", "--destinations", str(destinations_file)]) == 0
        s3_client.put_object.assert_called_once()

    def test_download(self, destinations_file, s3_client, capsys):
        """Test --download prints a presigned URL"""
        s3_client.generate_presigned_url.return_value = "https://signed.example.com/x"

        assert main(["--download", "backups/x.tar.xz", "--destinations", str(destinations_file)]) == 0
        assert "https://signed.example.com/x" in capsys.readouterr().out

    def test_list(self, destinations_file, s3_client):
        """Test --list pages through the destination"""
        s3_client.list_objects_v2.return_value = {"CommonPrefixes": [{"Prefix": "github-backups/cli/"}]}

        assert main(["--list", "github-backups/", "--destinations", str(destinations_file)]) == 0
        s3_client.list_objects_v2.assert_called_once()
