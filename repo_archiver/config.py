"""
Settings from the environment and destination files

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
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import yaml
from dotenv import load_dotenv

from .archiver import DEFAULT_ARCHIVE_TIMEOUT, DEFAULT_COMPRESSION_LEVEL
from .base import DestinationCredential
from .fetcher import DEFAULT_BRANCH_SYNC_TIMEOUT, DEFAULT_CLONE_TIMEOUT
from .job_queue import DEFAULT_WORKER_PAUSE
from .s3_uploader import DEFAULT_NAMESPACE
from .workspace import DEFAULT_WORKSPACE_ROOT

logger = logging.getLogger(__name__)

_REQUIRED_DESTINATION_KEYS = ("name", "bucket", "access_key_id", "secret_access_key")


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"[CONFIG] Ignoring non-integer {name}={value!r}, using {default}")
        return default


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"[CONFIG] Ignoring non-numeric {name}={value!r}, using {default}")
        return default


@dataclass
class Settings:
    workspace_root: str = DEFAULT_WORKSPACE_ROOT
    namespace: str = DEFAULT_NAMESPACE
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    clone_timeout: int = DEFAULT_CLONE_TIMEOUT
    branch_sync_timeout: int = DEFAULT_BRANCH_SYNC_TIMEOUT
    archive_timeout: int = DEFAULT_ARCHIVE_TIMEOUT
    worker_pause: float = DEFAULT_WORKER_PAUSE
    github_host: str = "github.com"
    log_file: str = "repo-archiver.log"

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the environment, loading a .env file first"""
        load_dotenv()
        level = _int_env("COMPRESSION_LEVEL", DEFAULT_COMPRESSION_LEVEL)
        return cls(
            workspace_root=os.getenv("WORKSPACE_ROOT", DEFAULT_WORKSPACE_ROOT),
            namespace=os.getenv("BACKUP_NAMESPACE", DEFAULT_NAMESPACE),
            compression_level=min(max(level, 1), 9),
            clone_timeout=_int_env("CLONE_TIMEOUT", DEFAULT_CLONE_TIMEOUT),
            branch_sync_timeout=_int_env("BRANCH_SYNC_TIMEOUT", DEFAULT_BRANCH_SYNC_TIMEOUT),
            archive_timeout=_int_env("ARCHIVE_TIMEOUT", DEFAULT_ARCHIVE_TIMEOUT),
            worker_pause=_float_env("WORKER_PAUSE", DEFAULT_WORKER_PAUSE),
            github_host=os.getenv("GITHUB_HOST", "github.com"),
            log_file=os.getenv("LOG_FILE", "repo-archiver.log"),
        )


def load_destinations(path: Union[str, Path]) -> List[DestinationCredential]:
    """
    Load destinations from a YAML file.

    Expected layout:

        destinations:
          - name: primary
            endpoint: https://s3.example.com
            region: us-east-1
            bucket: backups
            access_key_id: <encrypted>
            secret_access_key: <encrypted>
            force_path_style: true
            is_default: true

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is malformed or a destination lacks a required key
    """
    path = Path(path)
    with open(path, "r") as f:
        config = yaml.safe_load(f) or {}

    entries = config.get("destinations") if isinstance(config, dict) else None
    if not isinstance(entries, list):
        raise ValueError(f"{path}: expected a 'destinations' list")

    destinations = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f"{path}: destination #{index + 1} is not a mapping")
        missing = [key for key in _REQUIRED_DESTINATION_KEYS if not entry.get(key)]
        if missing:
            raise ValueError(
                f"{path}: destination #{index + 1} missing {', '.join(missing)}"
            )
        destinations.append(
            DestinationCredential(
                name=str(entry["name"]),
                endpoint=entry.get("endpoint"),
                region=str(entry.get("region", "us-east-1")),
                bucket=str(entry["bucket"]),
                access_key_id=str(entry["access_key_id"]),
                secret_access_key=str(entry["secret_access_key"]),
                force_path_style=bool(entry.get("force_path_style", False)),
                is_default=bool(entry.get("is_default", False)),
                id=str(entry["id"]) if entry.get("id") is not None else None,
            )
        )

    logger.info(f"[CONFIG] Loaded {len(destinations)} destination(s) from {path}")
    return destinations


def select_destinations(
    destinations: List[DestinationCredential], names: Optional[List[str]] = None
) -> List[DestinationCredential]:
    """Pick destinations by name; unknown names raise ValueError"""
    if not names:
        return list(destinations)
    by_name = {d.name: d for d in destinations}
    unknown = [name for name in names if name not in by_name]
    if unknown:
        raise ValueError(f"Unknown destination(s): {', '.join(unknown)}")
    return [by_name[name] for name in names]
