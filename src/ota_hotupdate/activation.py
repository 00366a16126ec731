"""
Bundle activation.

The activation service decides which bundle the host application loads on
its next start. From the orchestrator's point of view every call is atomic:
it either switches the active bundle or leaves it untouched and reports
False.

SymlinkActivationService layout under bundles_dir:

    releases/<id>/...          unpacked archives
    current -> bundle file     bundle loaded by the host application
    previous -> bundle file    bundle restored by rollback_to_previous()

Only one previous bundle is kept. Releases that are no longer referenced by
either link are removed when they drop out of the rotation.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING

from ota_hotupdate.errors import ActivationFailedError
from ota_hotupdate.logging import get_logger
from ota_hotupdate.operations import (
    atomic_symlink_switch,
    ensure_directory,
    find_bundle_file,
    get_symlink_target,
    remove_symlink,
    safe_remove_directory,
    unpack_archive,
)

if TYPE_CHECKING:
    from ota_hotupdate.config import ActivationConfig

logger = get_logger(__name__)

Restarter = Callable[[], Awaitable[None]]

DEFAULT_FORMAT_HINT = ".bundle"


class ActivationService(ABC):
    """Host capability that swaps the loaded bundle."""

    @abstractmethod
    async def install_bundle(self, path: str, format_hint: str | None = None) -> bool:
        """
        Install the artifact at path and make it the active bundle.

        Args:
            path: Downloaded artifact (archive or bundle file).
            format_hint: Suffix used to locate the bundle inside the artifact.

        Returns:
            True if the bundle is now active.
        """

    @abstractmethod
    async def install_exact_bundle(self, path: str) -> bool:
        """
        Make the bundle at exactly this path active, with no unpacking or
        suffix lookup. An empty path clears the active bundle so the host
        falls back to the code it shipped with.
        """

    @abstractmethod
    async def delete_bundle(self) -> bool:
        """Delete the active bundle. Returns True if one was deleted."""

    @abstractmethod
    async def rollback_to_previous(self) -> bool:
        """Reactivate the previous bundle. Returns True on success."""

    @abstractmethod
    async def restart(self) -> None:
        """Restart the host application."""


class SymlinkActivationService(ActivationService):
    """
    ActivationService that tracks bundles with atomically switched symlinks.

    Attributes:
        bundles_dir: Root directory for releases and activation links.
        default_format_hint: Suffix used when install_bundle gets no hint.
    """

    def __init__(
        self,
        bundles_dir: Path | str,
        *,
        default_format_hint: str = DEFAULT_FORMAT_HINT,
        restarter: Restarter | None = None,
    ) -> None:
        """
        Initialize the SymlinkActivationService.

        Args:
            bundles_dir: Root directory for releases and activation links.
            default_format_hint: Bundle file suffix used when none is given.
            restarter: Async callable restarting the host application.
        """
        self.bundles_dir = Path(bundles_dir)
        self.default_format_hint = default_format_hint
        self._restarter = restarter

    @classmethod
    def from_config(
        cls,
        config: ActivationConfig,
        restarter: Restarter | None = None,
    ) -> SymlinkActivationService:
        """Create a SymlinkActivationService from configuration."""
        return cls(
            config.bundles_dir,
            default_format_hint=config.default_format_hint,
            restarter=restarter,
        )

    @property
    def releases_dir(self) -> Path:
        return self.bundles_dir / "releases"

    @property
    def current_link(self) -> Path:
        return self.bundles_dir / "current"

    @property
    def previous_link(self) -> Path:
        return self.bundles_dir / "previous"

    def current_bundle(self) -> Path | None:
        """Return the active bundle path, if any."""
        return get_symlink_target(self.current_link)

    def previous_bundle(self) -> Path | None:
        """Return the bundle restored by a rollback, if any."""
        return get_symlink_target(self.previous_link)

    def _owning_release(self, bundle: Path | None) -> Path | None:
        """Return the release directory holding a bundle, if it is one of ours."""
        if bundle is None:
            return None
        try:
            relative = bundle.relative_to(self.releases_dir.resolve())
        except ValueError:
            return None
        return self.releases_dir / relative.parts[0]

    def _retire(self, bundle: Path | None, *keep: Path | None) -> None:
        """Remove a bundle's release directory unless a kept bundle lives there."""
        release = self._owning_release(bundle)
        if release is None:
            return
        if any(self._owning_release(k) == release for k in keep if k is not None):
            return
        safe_remove_directory(release)

    def _activate(self, bundle: Path) -> None:
        """Make bundle current, rotating the old current bundle to previous."""
        old_current = self.current_bundle()
        old_previous = self.previous_bundle()

        if old_current is not None and not old_current.exists():
            # Dangling link, e.g. the git working tree was removed
            logger.warning(
                "Active bundle is missing, replacing without rotation",
                extra={"bundle": str(old_current)},
            )
        elif old_current is not None and old_current != bundle.resolve():
            atomic_symlink_switch(old_current, self.previous_link)
            self._retire(old_previous, old_current, bundle.resolve())

        atomic_symlink_switch(bundle.resolve(), self.current_link)

    def _unpack_release(self, archive: Path, suffix: str) -> Path | None:
        release_dir = (
            self.releases_dir / f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        )
        try:
            unpack_archive(archive, release_dir)
        except ActivationFailedError:
            safe_remove_directory(release_dir)
            raise
        bundle = find_bundle_file(release_dir, suffix)
        if bundle is None:
            safe_remove_directory(release_dir)
        return bundle

    async def install_bundle(self, path: str, format_hint: str | None = None) -> bool:
        archive = Path(path)
        if not path or not archive.is_file():
            logger.error("Bundle artifact not found", extra={"path": path})
            return False

        suffix = format_hint or self.default_format_hint
        if not suffix.startswith("."):
            suffix = f".{suffix}"

        try:
            ensure_directory(self.releases_dir)
            bundle = await asyncio.to_thread(self._unpack_release, archive, suffix)
            if bundle is None:
                logger.error(
                    "No bundle file found in artifact",
                    extra={"path": path, "format_hint": suffix},
                )
                return False
            self._activate(bundle)
        except ActivationFailedError as e:
            logger.error(
                f"Bundle installation failed: {e.message}",
                extra={"path": path, **e.details},
            )
            return False
        finally:
            archive.unlink(missing_ok=True)

        logger.info("Bundle installed", extra={"bundle": str(bundle)})
        return True

    async def install_exact_bundle(self, path: str) -> bool:
        if not path:
            removed = remove_symlink(self.current_link)
            logger.info("Active bundle cleared", extra={"removed": removed})
            return True

        bundle = Path(path)
        if not bundle.is_file():
            logger.error("Exact bundle path does not exist", extra={"path": path})
            return False

        try:
            self._activate(bundle)
        except ActivationFailedError as e:
            logger.error(
                f"Exact bundle activation failed: {e.message}",
                extra={"path": path, **e.details},
            )
            return False

        logger.info("Exact bundle activated", extra={"bundle": path})
        return True

    async def delete_bundle(self) -> bool:
        current = self.current_bundle()
        if current is None:
            logger.info("No active bundle to delete")
            return False

        remove_symlink(self.current_link)
        self._retire(current, self.previous_bundle())
        logger.info("Active bundle deleted", extra={"bundle": str(current)})
        return True

    async def rollback_to_previous(self) -> bool:
        previous = self.previous_bundle()
        if previous is None or not previous.exists():
            logger.warning("No previous bundle available for rollback")
            return False

        current = self.current_bundle()
        try:
            atomic_symlink_switch(previous, self.current_link)
        except ActivationFailedError as e:
            logger.error(f"Rollback failed: {e.message}", extra=e.details)
            return False

        remove_symlink(self.previous_link)
        self._retire(current, previous)
        logger.info("Rolled back to previous bundle", extra={"bundle": str(previous)})
        return True

    async def restart(self) -> None:
        if self._restarter is None:
            logger.warning("No restarter configured, skipping application restart")
            return
        await self._restarter()
