"""
Transport abstractions.

Transports separate "how to obtain the bundle" from "how to activate it"
and from the orchestration itself. A transport owns its temporary files and
working trees; the orchestrator only receives a final path.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ota_hotupdate.models import (
    CloneResult,
    GitProgressCallback,
    ProgressCallback,
    PullResult,
)


class ArchiveTransport(ABC):
    """Downloads a bundle artifact to a local file."""

    @abstractmethod
    async def fetch(
        self,
        uri: str,
        headers: dict[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """
        Fetch the artifact at uri.

        Args:
            uri: Location of the artifact.
            headers: Extra request headers.
            on_progress: Called zero or more times with (bytes_received,
                bytes_total) as decimal strings.

        Returns:
            Local path of the downloaded artifact. An empty string means the
            transfer produced nothing usable.

        Raises:
            TransportError: If the transfer fails.
        """


class GitTransport(ABC):
    """Clones or pulls a git working tree holding the bundle."""

    @abstractmethod
    async def get_config(self, folder_name: str | None = None) -> dict[str, Any] | None:
        """Return the working tree's git config, or None if there is no checkout."""

    @abstractmethod
    async def get_branch_name(self, folder_name: str | None = None) -> str | None:
        """Return the checked-out branch name, or None."""

    @abstractmethod
    async def pull(
        self,
        branch: str,
        on_progress: GitProgressCallback | None = None,
        folder_name: str | None = None,
    ) -> PullResult:
        """Update the existing checkout from its remote."""

    @abstractmethod
    async def clone(
        self,
        url: str,
        bundle_path: str,
        on_progress: GitProgressCallback | None = None,
        folder_name: str | None = None,
        branch: str | None = None,
    ) -> CloneResult:
        """Create a fresh checkout and locate the bundle inside it."""

    @abstractmethod
    async def remove_git_update(self, folder_name: str | None = None) -> None:
        """Delete the working tree."""
