"""
Base types for repository backup runs

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
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import FetchFailed, NoGitHubInstallation


@dataclass(frozen=True)
class RepositoryRef:
    owner: str
    name: str
    full_name: str
    default_branch: Optional[str] = None
    installation_id: Optional[str] = None
    clone_url: Optional[str] = None

    @classmethod
    def from_full_name(cls, full_name: str, **kwargs) -> "RepositoryRef":
        if "/" not in full_name:
            raise ValueError(
                f"Invalid repository format: {full_name}. Use owner/repo"
            )
        owner, name = full_name.split("/", 1)
        return cls(owner=owner, name=name, full_name=full_name, **kwargs)


@dataclass
class DestinationCredential:
    """Object-storage destination. Key material is held encrypted."""

    name: str
    endpoint: Optional[str]
    region: str
    bucket: str
    access_key_id: str = field(repr=False)
    secret_access_key: str = field(repr=False)
    force_path_style: bool = False
    is_default: bool = False
    id: Optional[str] = None


class Phase(Enum):
    INIT = "init"
    CLONE = "clone"
    COMPRESS = "compress"
    UPLOAD = "upload"
    CLEANUP = "cleanup"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def order(self) -> int:
        return _PHASE_ORDER[self]


_PHASE_ORDER = {phase: index for index, phase in enumerate(Phase)}


@dataclass(frozen=True)
class ProgressEvent:
    phase: Phase
    message: str
    progress: Optional[int] = None
    current_repo: Optional[int] = None
    total_repos: Optional[int] = None


class RepositorySource(ABC):
    """Mints fetch credentials and lists repositories for an installation"""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def mint_fetch_token(self, installation_id: Optional[str]) -> str:
        pass

    @abstractmethod
    def get_repositories(self, installation_id: str) -> List[RepositoryRef]:
        pass

    def resolve_repository(
        self, full_name: str, installation_ids: List[str]
    ) -> RepositoryRef:
        if not installation_ids:
            raise NoGitHubInstallation("No GitHub App installations found for user")

        for installation_id in installation_ids:
            try:
                repos = self.get_repositories(installation_id)
            except Exception as e:
                self.logger.error(
                    f"Failed to get repositories for installation {installation_id}: {e}"
                )
                continue

            for repo in repos:
                if repo.full_name == full_name:
                    return repo

        raise FetchFailed(
            full_name, f"Repository {full_name} not found in user installations"
        )
