"""
Version store for OTA hot update.

The version store persists two values across application restarts: the
current bundle version (an integer kept in string form) and an opaque
metadata text blob. The orchestrator writes them only after a bundle has
been activated successfully.

FileVersionStore keeps both values in a JSON file written atomically
(temp file + fsync + rename) with a SHA-256 checksum and a backup copy used
to recover from a corrupted primary file.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import os
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from ota_hotupdate.logging import get_logger

if TYPE_CHECKING:
    from ota_hotupdate.config import StorageConfig

logger = get_logger(__name__)

NO_VERSION = "0"


class VersionStore(ABC):
    """
    Persistence for the current version and update metadata.

    Implementations are process-wide singletons from the orchestrator's
    point of view. Each call is an independent operation; no transactional
    semantics are provided.
    """

    @abstractmethod
    async def get_current_version(self) -> str:
        """Return the stored version in string form ("0" if none)."""

    @abstractmethod
    async def set_current_version(self, version: str) -> bool:
        """Store the version string. Returns True on success."""

    @abstractmethod
    async def get_metadata(self) -> str | None:
        """Return the stored metadata text, or None if none was stored."""

    @abstractmethod
    async def set_metadata(self, metadata: str) -> bool:
        """Store metadata text. Returns True on success."""


class VersionState(BaseModel):
    """
    Contents of the version state file.

    Attributes:
        format_version: Schema version of the file.
        current_version: Current bundle version in string form.
        metadata: Serialized update metadata.
        last_modified: ISO 8601 timestamp of the last write.
    """

    format_version: str = Field(
        default="1.0",
        description="Schema version of the state file",
    )
    current_version: str = Field(
        default=NO_VERSION,
        description="Current bundle version in string form",
    )
    metadata: str | None = Field(
        default=None,
        description="Serialized update metadata",
    )
    last_modified: str | None = Field(
        default=None,
        description="ISO 8601 timestamp of the last write",
    )


class FileVersionStore(VersionStore):
    """
    VersionStore backed by a JSON file with checksum and backup.

    Attributes:
        version_file: Path of the primary state file.
        backup_file: Path of the backup state file.
    """

    DEFAULT_VERSION_FILE = Path("/var/lib/ota-hotupdate/version.json")

    def __init__(
        self,
        version_file: Path | str | None = None,
        backup_file: Path | str | None = None,
    ) -> None:
        """
        Initialize the FileVersionStore.

        Args:
            version_file: Path of the state file.
            backup_file: Path of the backup file. Defaults to
                <version_file>.backup.
        """
        self.version_file = (
            Path(version_file) if version_file else self.DEFAULT_VERSION_FILE
        )
        self.backup_file = (
            Path(backup_file)
            if backup_file
            else self.version_file.with_name(self.version_file.name + ".backup")
        )
        self._state: VersionState | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: StorageConfig) -> FileVersionStore:
        """Create a FileVersionStore from configuration."""
        return cls(version_file=config.version_file, backup_file=config.backup_file)

    def _calculate_checksum(self, data: dict[str, Any]) -> str:
        """
        Calculate the SHA-256 checksum of state data.

        The checksum field itself is excluded.
        """
        data_copy = copy.deepcopy(data)
        data_copy.pop("checksum", None)
        data_json = json.dumps(data_copy, sort_keys=True, separators=(",", ":"))
        return f"sha256:{hashlib.sha256(data_json.encode()).hexdigest()}"

    def _load_from_file(self, path: Path) -> VersionState:
        """
        Load and verify state from a file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the JSON or the checksum is invalid.
        """
        with open(path) as f:
            data = json.load(f)

        stored_checksum = data.get("checksum")
        if stored_checksum and stored_checksum != self._calculate_checksum(data):
            raise ValueError(f"Checksum verification failed for {path}")

        data.pop("checksum", None)
        return VersionState(**data)

    def _save_to_file(self, path: Path, state: VersionState) -> None:
        """Write state to a file atomically."""
        path.parent.mkdir(parents=True, exist_ok=True)

        data = state.model_dump()
        data["checksum"] = self._calculate_checksum(data)

        temp_path = path.with_suffix(path.suffix + ".tmp")
        with open(temp_path, "w") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        temp_path.rename(path)

        logger.debug("Saved version state", extra={"path": str(path)})

    def _load(self) -> VersionState:
        """
        Return the cached state, loading it from disk on first use.

        Recovery order: primary file, backup file, fresh state.
        """
        if self._state is not None:
            return self._state

        if not self.version_file.exists() and not self.backup_file.exists():
            self._state = VersionState()
            return self._state

        try:
            self._state = self._load_from_file(self.version_file)
            return self._state
        except (FileNotFoundError, ValueError) as e:
            logger.error(
                "Version state file corrupted or missing",
                extra={"error": str(e), "path": str(self.version_file)},
            )

        try:
            self._state = self._load_from_file(self.backup_file)
            self._save_to_file(self.version_file, self._state)
            logger.info("Version state restored from backup")
            return self._state
        except (FileNotFoundError, ValueError, OSError) as e:
            logger.error(
                "Backup recovery failed, starting from an empty state",
                extra={"error": str(e), "path": str(self.backup_file)},
            )

        self._state = VersionState()
        return self._state

    def _save(self, state: VersionState) -> bool:
        state.last_modified = datetime.now(UTC).isoformat()
        try:
            self._save_to_file(self.version_file, state)
            self._save_to_file(self.backup_file, state)
        except OSError as e:
            logger.error(
                "Failed to save version state",
                extra={"error": str(e), "path": str(self.version_file)},
            )
            return False
        self._state = state
        return True

    async def get_current_version(self) -> str:
        async with self._lock:
            return self._load().current_version

    async def set_current_version(self, version: str) -> bool:
        async with self._lock:
            state = self._load().model_copy()
            state.current_version = version
            saved = self._save(state)
        if saved:
            logger.info("Current version stored", extra={"version": version})
        return saved

    async def get_metadata(self) -> str | None:
        async with self._lock:
            return self._load().metadata

    async def set_metadata(self, metadata: str) -> bool:
        async with self._lock:
            state = self._load().model_copy()
            state.metadata = metadata
            return self._save(state)
