"""
Update orchestration for OTA hot update.

UpdateOrchestrator drives the two update flows:

- Archive flow: validate input -> version gate -> transfer -> activate
  -> persist version and metadata -> success callback -> optional restart
- Git flow: validate input -> inspect checkout -> pull (existing checkout)
  or clone + activate (fresh install) -> callbacks -> optional restart

Within one invocation the stages run in that order and stop at the first
failure. Version and metadata are written only after activation succeeded.
Every failure is logged, reported through the option callbacks and returned
as an UpdateOutcome; the flows never raise.

Restarts are scheduled on the event loop and fire after the flow has
returned. No locking happens across invocations: callers must run one
update at a time.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ota_hotupdate.activation import ActivationService, SymlinkActivationService
from ota_hotupdate.errors import (
    ActivationFailedError,
    CloneFailedError,
    InvalidInputError,
    MetadataSerializationError,
    PullFailedError,
    TransferFailedError,
    TransportError,
    UpdateError,
    VersionRejectedError,
)
from ota_hotupdate.logging import get_logger
from ota_hotupdate.metadata import Metadata, deserialize_metadata, serialize_metadata
from ota_hotupdate.models import (
    DEFAULT_RESTART_DELAY_MS,
    GitUpdateOptions,
    UpdateOptions,
    UpdateOutcome,
    UpdateStage,
    UpdateWarning,
)
from ota_hotupdate.restart import SystemdRestarter
from ota_hotupdate.store import FileVersionStore, VersionStore
from ota_hotupdate.transports.git import GitCliTransport
from ota_hotupdate.transports.http import HttpArchiveTransport

if TYPE_CHECKING:
    from ota_hotupdate.config import AppConfig
    from ota_hotupdate.transports.base import ArchiveTransport, GitTransport

logger = get_logger(__name__)

NO_VERSION = 0

# Valid stage transitions within one invocation
_VALID_TRANSITIONS: dict[UpdateStage, set[UpdateStage]] = {
    UpdateStage.VALIDATING: {UpdateStage.TRANSFERRING, UpdateStage.INSPECTING},
    UpdateStage.TRANSFERRING: {UpdateStage.ACTIVATING},
    UpdateStage.ACTIVATING: {UpdateStage.COMMITTING, UpdateStage.COMPLETED},
    UpdateStage.COMMITTING: {UpdateStage.COMPLETED},
    UpdateStage.INSPECTING: {UpdateStage.PULLING, UpdateStage.CLONING},
    UpdateStage.PULLING: {UpdateStage.COMPLETED},
    UpdateStage.CLONING: {UpdateStage.ACTIVATING},
    UpdateStage.COMPLETED: set(),
}


class _FlowTracker:
    """Tracks the stage of one flow invocation."""

    def __init__(self, flow: str) -> None:
        self.flow = flow
        self.stage = UpdateStage.VALIDATING

    def advance(self, new_stage: UpdateStage) -> None:
        if new_stage not in _VALID_TRANSITIONS[self.stage]:
            raise RuntimeError(
                f"Invalid {self.flow} stage transition from "
                f"{self.stage.value} to {new_stage.value}"
            )
        logger.debug(
            f"Stage transition: {self.stage.value} -> {new_stage.value}",
            extra={"flow": self.flow, "old_stage": self.stage.value},
        )
        self.stage = new_stage


def coerce_version(raw: str | None) -> int | float:
    """
    Convert a stored version string to a number.

    An empty value means no bundle was ever installed and yields 0. A
    non-numeric value yields NaN, which compares False against any declared
    version and therefore lets the update through.
    """
    text = (raw or "").strip()
    if not text:
        return NO_VERSION
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        logger.warning(
            "Stored version is not numeric, version gate disabled",
            extra={"stored_version": raw},
        )
        return math.nan
    return int(number) if number.is_integer() else number


class UpdateOrchestrator:
    """
    Orchestrates bundle updates over pluggable transports.

    Attributes:
        store: Persistence for the current version and metadata.
        activation: Service that swaps the active bundle.
        restart_delay_ms: Default delay before a scheduled restart.

    Example:
        >>> orchestrator = UpdateOrchestrator.from_config(load_config())
        >>> outcome = await orchestrator.apply_archive_update(
        ...     None, "https://example.com/bundle.zip", 5, UpdateOptions()
        ... )
        >>> outcome.ok
        True
    """

    def __init__(
        self,
        store: VersionStore,
        activation: ActivationService,
        *,
        archive_transport: ArchiveTransport | None = None,
        git_transport: GitTransport | None = None,
        restart_delay_ms: int = DEFAULT_RESTART_DELAY_MS,
    ) -> None:
        """
        Initialize the UpdateOrchestrator.

        Args:
            store: Version store.
            activation: Activation service.
            archive_transport: Transport used when a flow is given none.
            git_transport: Git transport used when a flow is given none.
            restart_delay_ms: Default restart delay in milliseconds.
        """
        self.store = store
        self.activation = activation
        self.restart_delay_ms = restart_delay_ms
        self._archive_transport = archive_transport
        self._git_transport = git_transport
        self._pending_restarts: set[asyncio.TimerHandle] = set()
        self._restart_tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(cls, config: AppConfig) -> UpdateOrchestrator:
        """
        Create an orchestrator wired with the default collaborators.

        Args:
            config: Application configuration.

        Returns:
            Orchestrator using FileVersionStore, SymlinkActivationService,
            HttpArchiveTransport and GitCliTransport.
        """
        restarter = SystemdRestarter.from_config(config.restart)
        return cls(
            store=FileVersionStore.from_config(config.storage),
            activation=SymlinkActivationService.from_config(
                config.activation, restarter=restarter
            ),
            archive_transport=HttpArchiveTransport.from_config(config.archive),
            git_transport=GitCliTransport.from_config(config.git),
            restart_delay_ms=config.restart.delay_ms,
        )

    # -------------------------------------------------------------------------
    # Callbacks and failure reporting
    # -------------------------------------------------------------------------

    @staticmethod
    def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
        """Run a caller callback; a failing callback must not break the flow."""
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Update callback failed: {e}", exc_info=True)

    @staticmethod
    def _failure(
        error: UpdateError,
        flow: _FlowTracker,
        version: int | None = None,
    ) -> UpdateOutcome:
        logger.error(
            f"{flow.flow.capitalize()} update failed: {error.message}",
            extra={
                "error_code": error.error_code,
                "stage": flow.stage.value,
                "details": error.details or None,
            },
        )
        return UpdateOutcome(
            ok=False,
            error=error.kind,
            detail=error.message,
            stage=flow.stage,
            version=version,
        )

    def _install_fail(
        self,
        options: UpdateOptions,
        flow: _FlowTracker,
        error: UpdateError,
        version: int | None,
    ) -> UpdateOutcome:
        """Single exit for every archive flow failure."""
        outcome = self._failure(error, flow, version)
        self._invoke(options.update_fail, error.message)
        return outcome

    # -------------------------------------------------------------------------
    # Restart scheduling
    # -------------------------------------------------------------------------

    @property
    def pending_restarts(self) -> int:
        """Number of scheduled restarts that have not fired yet."""
        return len(self._pending_restarts)

    def cancel_pending_restarts(self) -> int:
        """Cancel scheduled restarts. Returns how many were cancelled."""
        cancelled = len(self._pending_restarts)
        for handle in self._pending_restarts:
            handle.cancel()
        self._pending_restarts.clear()
        return cancelled

    def _schedule_restart(self, delay_ms: int | None = None) -> None:
        """Restart the application after delay_ms (0 or None means the default)."""
        delay = delay_ms or self.restart_delay_ms
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._pending_restarts.discard(handle)
            task = loop.create_task(self.reset_app())
            self._restart_tasks.add(task)
            task.add_done_callback(self._restart_tasks.discard)

        handle = loop.call_later(max(delay, 0) / 1000, fire)
        self._pending_restarts.add(handle)
        logger.info("Application restart scheduled", extra={"delay_ms": delay})

    async def reset_app(self) -> None:
        """Restart the application through the activation service."""
        try:
            await self.activation.restart()
        except Exception as e:
            logger.error(f"Application restart failed: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Version and metadata
    # -------------------------------------------------------------------------

    async def get_version_as_number(self) -> int | float:
        """Return the stored version as a number (NaN if corrupted)."""
        return coerce_version(await self.store.get_current_version())

    async def set_current_version(self, version: int) -> bool:
        """Store a version number."""
        return await self.store.set_current_version(str(version))

    async def get_update_metadata(self) -> Metadata:
        """
        Return the stored metadata.

        Raises:
            MetadataSerializationError: If the stored text cannot be parsed.
        """
        return deserialize_metadata(await self.store.get_metadata())

    async def set_update_metadata(self, metadata: Any) -> bool:
        """
        Store metadata.

        Raises:
            MetadataSerializationError: If the value is not JSON-representable.
        """
        return await self.store.set_metadata(serialize_metadata(metadata))

    async def _persist_version(self, version: int) -> UpdateWarning | None:
        try:
            stored = await self.set_current_version(version)
        except Exception as e:
            stored = False
            logger.error(f"Failed to store version: {e}", exc_info=True)
        if stored:
            return None
        logger.warning(
            "Bundle activated but version could not be stored",
            extra={"version": version},
        )
        return UpdateWarning(
            kind="version_persistence_failed",
            detail=f"Failed to store version {version}",
        )

    async def _persist_metadata(self, metadata: Any) -> UpdateWarning | None:
        try:
            stored = await self.set_update_metadata(metadata)
        except MetadataSerializationError as e:
            logger.error(
                f"Bundle activated but metadata was rejected: {e.message}",
                extra={"error_code": e.error_code, "details": e.details or None},
            )
            return UpdateWarning(kind=e.error_code, detail=e.message)
        except Exception as e:
            stored = False
            logger.error(f"Failed to store metadata: {e}", exc_info=True)
        if stored:
            return None
        return UpdateWarning(
            kind="metadata_persistence_failed",
            detail="Failed to store update metadata",
        )

    # -------------------------------------------------------------------------
    # Bundle management
    # -------------------------------------------------------------------------

    async def set_up_bundle_path(self, path: str, extension: str | None = None) -> bool:
        """Install and activate the artifact at path."""
        return await self.activation.install_bundle(path, extension)

    async def set_exact_bundle_path(self, path: str) -> bool:
        """Activate the bundle at exactly this path."""
        return await self.activation.install_exact_bundle(path)

    async def rollback_to_previous_bundle(self) -> bool:
        """Reactivate the previous bundle."""
        return await self.activation.rollback_to_previous()

    async def remove_bundle(self, restart_after: bool = False) -> bool:
        """
        Delete the active bundle.

        On successful deletion the stored version is reset to 0 and, if
        requested, a restart is scheduled. Nothing else happens if deletion
        fails.

        Args:
            restart_after: Restart the application after the deletion.

        Returns:
            True if a bundle was deleted.
        """
        deleted = await self.activation.delete_bundle()
        if not deleted:
            logger.info("No bundle removed")
            return False

        await self._persist_version(NO_VERSION)
        if restart_after:
            self._schedule_restart()
        return True

    async def remove_git_update(
        self,
        git: GitTransport | None = None,
        folder_name: str | None = None,
    ) -> None:
        """Clear the active git bundle and delete its working tree."""
        git = git or self._git_transport
        await self.activation.install_exact_bundle("")
        if git is not None:
            await git.remove_git_update(folder_name)

    # -------------------------------------------------------------------------
    # Archive flow
    # -------------------------------------------------------------------------

    async def apply_archive_update(
        self,
        transport: ArchiveTransport | None,
        source_uri: str,
        declared_version: int | None = None,
        options: UpdateOptions | None = None,
    ) -> UpdateOutcome:
        """
        Download, activate and commit a bundle archive.

        Args:
            transport: Transport fetching the archive. Falls back to the
                orchestrator's archive transport when None.
            source_uri: Location of the archive.
            declared_version: Version the archive represents. When given it
                must be greater than the stored version and is stored after
                activation.
            options: Callbacks and install options.

        Returns:
            The update outcome. Never raises.
        """
        options = options or UpdateOptions()
        flow = _FlowTracker("archive")
        version = declared_version

        if not source_uri:
            return self._install_fail(
                options, flow, InvalidInputError("Please give a valid URL!"), version
            )

        transport = transport or self._archive_transport
        if transport is None:
            return self._install_fail(
                options,
                flow,
                InvalidInputError("No archive transport configured"),
                version,
            )

        if declared_version is not None:
            try:
                current = await self.get_version_as_number()
            except Exception as e:
                return self._install_fail(
                    options,
                    flow,
                    VersionRejectedError(f"Cannot read the current version: {e}"),
                    version,
                )
            if declared_version <= current:
                return self._install_fail(
                    options,
                    flow,
                    VersionRejectedError(
                        "Please give a bigger version than the current version, "
                        f"the current version is {current}",
                        details={"declared": declared_version, "current": current},
                    ),
                    version,
                )

        flow.advance(UpdateStage.TRANSFERRING)
        try:
            path = await transport.fetch(source_uri, options.headers, options.progress)
        except UpdateError as e:
            return self._install_fail(options, flow, e, version)
        except Exception as e:
            return self._install_fail(
                options,
                flow,
                TransportError(f"Download failed: {e}", details={"uri": source_uri}),
                version,
            )

        if not path:
            return self._install_fail(
                options,
                flow,
                TransferFailedError(
                    f"Cannot download bundle file: {path!r}",
                    details={"uri": source_uri},
                ),
                version,
            )

        flow.advance(UpdateStage.ACTIVATING)
        try:
            activated = await self.activation.install_bundle(
                path, options.extension_bundle
            )
        except Exception as e:
            return self._install_fail(
                options,
                flow,
                ActivationFailedError(
                    f"Bundle activation failed: {e}", details={"path": path}
                ),
                version,
            )
        if not activated:
            return self._install_fail(
                options,
                flow,
                ActivationFailedError("Bundle activation failed", details={"path": path}),
                version,
            )

        flow.advance(UpdateStage.COMMITTING)
        warnings: list[UpdateWarning] = []
        if declared_version is not None:
            warning = await self._persist_version(declared_version)
            if warning is not None:
                warnings.append(warning)
        if options.metadata is not None:
            warning = await self._persist_metadata(options.metadata)
            if warning is not None:
                warnings.append(warning)

        self._invoke(options.update_success)

        if options.restart_after_install:
            self._schedule_restart(options.restart_delay)

        flow.advance(UpdateStage.COMPLETED)
        logger.info(
            "Archive update installed",
            extra={"uri": source_uri, "version": declared_version},
        )
        return UpdateOutcome(
            ok=True,
            stage=flow.stage,
            version=version,
            restart_scheduled=options.restart_after_install,
            warnings=warnings,
        )

    # -------------------------------------------------------------------------
    # Git flow
    # -------------------------------------------------------------------------

    async def apply_git_update(
        self,
        git: GitTransport | None,
        options: GitUpdateOptions,
    ) -> UpdateOutcome:
        """
        Update from a git repository.

        An existing checkout (git config and branch both present) is pulled;
        otherwise the repository is cloned and the bundle inside it is
        activated. on_finish_progress is called exactly once, whatever
        happens.

        Args:
            git: Git transport. Falls back to the orchestrator's git
                transport when None.
            options: Repository location, callbacks and install options.

        Returns:
            The update outcome. Never raises.
        """
        flow = _FlowTracker("git")
        git = git or self._git_transport

        try:
            if not options.url or not options.bundle_path:
                error: UpdateError = InvalidInputError(
                    "url or bundle_path should not be empty",
                    details={"url": options.url, "bundle_path": options.bundle_path},
                )
                outcome = self._failure(error, flow)
                self._invoke(options.on_clone_failed, error.message)
                return outcome

            if git is None:
                error = InvalidInputError("No git transport configured")
                outcome = self._failure(error, flow)
                self._invoke(options.on_clone_failed, error.message)
                return outcome

            flow.advance(UpdateStage.INSPECTING)
            config, branch = await asyncio.gather(
                git.get_config(options.folder_name),
                git.get_branch_name(options.folder_name),
            )

            if config and branch:
                flow.advance(UpdateStage.PULLING)
                pull = await git.pull(
                    branch=branch,
                    on_progress=options.on_progress,
                    folder_name=options.folder_name,
                )
                if not pull.success:
                    outcome = self._failure(
                        PullFailedError(pull.msg or "git pull failed"), flow
                    )
                    self._invoke(options.on_pull_failed, pull.msg)
                    return outcome

                flow.advance(UpdateStage.COMPLETED)
                logger.info("Git checkout updated", extra={"branch": branch})
                self._invoke(options.on_pull_success)
                if options.restart_after_install:
                    self._schedule_restart(options.restart_delay)
                return UpdateOutcome(
                    ok=True,
                    stage=flow.stage,
                    restart_scheduled=options.restart_after_install,
                )

            flow.advance(UpdateStage.CLONING)
            clone = await git.clone(
                url=options.url,
                bundle_path=options.bundle_path,
                on_progress=options.on_progress,
                folder_name=options.folder_name,
                branch=options.branch,
            )
            if not (clone.success and clone.bundle):
                outcome = self._failure(
                    CloneFailedError(clone.msg or "git clone produced no bundle"), flow
                )
                self._invoke(options.on_clone_failed, clone.msg)
                return outcome

            flow.advance(UpdateStage.ACTIVATING)
            if not await self.activation.install_exact_bundle(clone.bundle):
                error = ActivationFailedError(
                    "Bundle activation failed", details={"path": clone.bundle}
                )
                outcome = self._failure(error, flow)
                self._invoke(options.on_clone_failed, error.message)
                return outcome

            flow.advance(UpdateStage.COMPLETED)
            logger.info("Git bundle installed", extra={"bundle": clone.bundle})
            self._invoke(options.on_clone_success)
            if options.restart_after_install:
                self._schedule_restart(options.restart_delay)
            return UpdateOutcome(
                ok=True,
                stage=flow.stage,
                restart_scheduled=options.restart_after_install,
            )

        except Exception as e:
            # Reported on the clone channel whichever branch was running
            outcome = self._failure(CloneFailedError(str(e)), flow)
            self._invoke(options.on_clone_failed, str(e))
            return outcome
        finally:
            self._invoke(options.on_finish_progress)
