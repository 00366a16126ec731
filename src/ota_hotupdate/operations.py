"""
Filesystem operations used to stage and activate bundles.

- Atomic symlink switching (temp symlink + os.replace)
- Safe directory creation and removal
- Archive unpacking with path traversal protection
- Locating the bundle file inside an unpacked release

CRITICAL: Symlink switching must be atomic so that the host application
never observes a missing or half-written "current" link. The pattern is:
1. Create temp symlink: os.symlink(target, temp_path)
2. Atomic rename: os.replace(temp_path, final_path)
"""

from __future__ import annotations

import os
import shutil
import tarfile
import uuid
import zipfile
from pathlib import Path

from ota_hotupdate.errors import ActivationFailedError
from ota_hotupdate.logging import get_logger

logger = get_logger(__name__)


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Raises:
        ActivationFailedError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise ActivationFailedError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def safe_remove_directory(path: Path, *, ignore_errors: bool = True) -> bool:
    """
    Remove a directory and its contents.

    Args:
        path: Directory to remove.
        ignore_errors: If True, ignore errors during removal.

    Returns:
        True if the directory was removed, False if it didn't exist.

    Raises:
        ActivationFailedError: If removal fails and ignore_errors is False.
    """
    if not path.exists():
        return False

    try:
        shutil.rmtree(path, ignore_errors=ignore_errors)
        logger.debug("Removed directory", extra={"path": str(path)})
        return True
    except OSError as e:
        if not ignore_errors:
            raise ActivationFailedError(
                f"Failed to remove directory: {path}",
                details={"path": str(path), "error": str(e)},
            ) from e
        return False


def atomic_symlink_switch(target: Path, symlink_path: Path) -> None:
    """
    Atomically point a symlink at a new target.

    Args:
        target: Path the symlink should point to.
        symlink_path: Symlink to create or replace.

    Raises:
        ActivationFailedError: If the target doesn't exist or the switch fails.
    """
    if not target.exists():
        raise ActivationFailedError(
            f"Symlink target does not exist: {target}",
            details={"target": str(target)},
        )

    symlink_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = symlink_path.parent / f".symlink_tmp_{uuid.uuid4().hex}"

    try:
        os.symlink(str(target), temp_path)
        os.replace(temp_path, symlink_path)
    except OSError as e:
        if os.path.lexists(temp_path):
            try:
                os.unlink(temp_path)
            except OSError:
                logger.warning(
                    "Failed to clean up temporary symlink",
                    extra={"path": str(temp_path)},
                )

        raise ActivationFailedError(
            f"Failed to switch symlink atomically: {e}",
            details={
                "symlink": str(symlink_path),
                "target": str(target),
                "error": str(e),
            },
        ) from e

    logger.info(
        "Atomic symlink switch completed",
        extra={"symlink": str(symlink_path), "target": str(target)},
    )


def get_symlink_target(symlink_path: Path) -> Path | None:
    """
    Get the resolved target of a symlink.

    Returns:
        The resolved target path, or None if the symlink doesn't exist.
    """
    if not symlink_path.is_symlink():
        return None

    try:
        return symlink_path.resolve()
    except OSError:
        return None


def remove_symlink(symlink_path: Path) -> bool:
    """Remove a symlink if present. Returns True if one was removed."""
    if not symlink_path.is_symlink():
        return False
    symlink_path.unlink()
    return True


def _is_within(base: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(base.resolve())
        return True
    except ValueError:
        return False


def unpack_archive(archive: Path, destination: Path) -> Path:
    """
    Unpack a zip or tar archive into a destination directory.

    A file that is neither a zip nor a tar archive is copied into the
    destination unchanged, so a plain bundle file can be installed as-is.

    Args:
        archive: Archive file to unpack.
        destination: Directory to unpack into (created if missing).

    Returns:
        The destination directory.

    Raises:
        ActivationFailedError: If the archive is unreadable or contains
            entries that escape the destination.
    """
    ensure_directory(destination)

    try:
        if zipfile.is_zipfile(archive):
            with zipfile.ZipFile(archive) as zf:
                for name in zf.namelist():
                    if not _is_within(destination, destination / name):
                        raise ActivationFailedError(
                            "Archive entry escapes the destination directory",
                            details={"entry": name, "archive": str(archive)},
                        )
                zf.extractall(destination)
        elif tarfile.is_tarfile(archive):
            with tarfile.open(archive) as tf:
                tf.extractall(destination, filter="data")
        else:
            shutil.copy2(archive, destination / archive.name)
    except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
        raise ActivationFailedError(
            f"Failed to unpack bundle archive: {e}",
            details={"archive": str(archive), "destination": str(destination)},
        ) from e

    logger.debug(
        "Unpacked bundle archive",
        extra={"archive": str(archive), "destination": str(destination)},
    )
    return destination


def find_bundle_file(root: Path, suffix: str) -> Path | None:
    """
    Find the bundle file inside an unpacked release.

    The shallowest file whose name ends with the suffix wins; ties are broken
    by path so the result is deterministic.
    """
    candidates = [p for p in root.rglob(f"*{suffix}") if p.is_file()]
    if not candidates:
        return None
    return min(candidates, key=lambda p: (len(p.relative_to(root).parts), str(p)))
