"""
Auto-discovery of GitHub and encryption credentials from standard locations

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
import subprocess
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


def get_github_app_credentials() -> Tuple[Optional[str], Optional[str]]:
    """
    Discover GitHub App credentials.

    Priority for the private key:
    1. GITHUB_APP_PRIVATE_KEY environment variable (escaped newlines allowed)
    2. File named by GITHUB_APP_PRIVATE_KEY_PATH

    Returns:
        Tuple of (app_id, private_key) - either may be None
    """
    app_id = os.getenv("GITHUB_APP_ID")

    private_key = os.getenv("GITHUB_APP_PRIVATE_KEY")
    if private_key:
        logger.debug("[TOKEN] GitHub App key found in GITHUB_APP_PRIVATE_KEY env var")
        return app_id, private_key.replace("\\n", "\n")

    key_path = os.getenv("GITHUB_APP_PRIVATE_KEY_PATH")
    if key_path:
        path = Path(key_path).expanduser()
        try:
            private_key = path.read_text()
            logger.info(f"[TOKEN] GitHub App key loaded from {path}")
            return app_id, private_key
        except OSError as e:
            logger.warning(f"[TOKEN] Failed to read GitHub App key {path}: {e}")

    return app_id, None


TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
GH_CLI_TIMEOUT = 5


def _token_from_gh_cli(host: str) -> Optional[str]:
    command = ["gh", "auth", "token"]
    if host != "github.com":
        command += ["--hostname", host]
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=GH_CLI_TIMEOUT)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"[TOKEN] gh CLI unavailable: {e}")
        return None
    token = result.stdout.strip() if result.returncode == 0 else ""
    return token or None


def get_github_token(host: str = "github.com") -> Optional[str]:
    """
    Personal token for fetching when no GitHub App is configured.

    Environment variables win over the gh CLI; for a GitHub Enterprise
    host the CLI is asked for that host's login.
    """
    for name in TOKEN_ENV_VARS:
        if os.getenv(name):
            logger.debug(f"[TOKEN] Using token from {name}")
            return os.getenv(name)

    token = _token_from_gh_cli(host)
    if token:
        logger.info(f"[TOKEN] Using gh CLI login for {host}")
    return token


def get_encryption_key() -> Optional[str]:
    key = os.getenv("ENCRYPTION_KEY")
    if key:
        logger.debug("[TOKEN] Encryption key found in ENCRYPTION_KEY env var")
    return key or None
