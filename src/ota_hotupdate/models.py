"""
Option, result and outcome types for the update flows.

Option objects carry caller callbacks and are plain dataclasses. Results
returned by transports and the outcome returned by the orchestrator are
Pydantic models so they can be logged and serialized as-is.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ota_hotupdate.errors import UpdateErrorKind

DEFAULT_RESTART_DELAY_MS = 300

# (bytes_received, bytes_total) as decimal strings
ProgressCallback = Callable[[str, str], None]
# (phase, loaded, total) as reported by git --progress
GitProgressCallback = Callable[[str, int, int], None]


class UpdateStage(str, Enum):
    """
    Stages an update invocation passes through.

    Archive flow: validating -> transferring -> activating -> committing
    -> completed. Git flow: validating -> inspecting -> pulling | cloning
    (-> activating) -> completed.
    """

    VALIDATING = "validating"
    TRANSFERRING = "transferring"
    ACTIVATING = "activating"
    COMMITTING = "committing"
    INSPECTING = "inspecting"
    PULLING = "pulling"
    CLONING = "cloning"
    COMPLETED = "completed"


@dataclass
class UpdateOptions:
    """
    Options for the archive update flow.

    Attributes:
        headers: Extra request headers handed to the transport.
        progress: Called with (bytes_received, bytes_total) as strings.
        metadata: Optional JSON-representable value persisted on success.
        extension_bundle: Format hint used to locate the bundle inside the
            downloaded artifact.
        restart_after_install: Restart the application after activation.
        restart_delay: Delay before the restart, in milliseconds. Defaults
            to the orchestrator restart delay (300 ms) when None or 0.
        update_success: Called once when the update is committed.
        update_fail: Called once with a failure detail.
    """

    headers: dict[str, str] = field(default_factory=dict)
    progress: ProgressCallback | None = None
    metadata: Any = None
    extension_bundle: str | None = None
    restart_after_install: bool = False
    restart_delay: int | None = None
    update_success: Callable[[], None] | None = None
    update_fail: Callable[[str | None], None] | None = None


@dataclass
class GitUpdateOptions:
    """
    Options for the git update flow.

    Attributes:
        url: Remote repository URL.
        bundle_path: Bundle file path relative to the working tree root.
        branch: Branch to clone; the remote default when None.
        folder_name: Working tree folder name; the transport default when None.
        on_progress: Called with (phase, loaded, total).
        restart_after_install: Restart the application after a pull or clone.
        restart_delay: Delay before the restart, in milliseconds. Defaults
            to the orchestrator restart delay (300 ms) when None or 0.
        on_pull_success: Called when an existing checkout was updated.
        on_pull_failed: Called with the pull failure message.
        on_clone_success: Called when a fresh checkout was activated.
        on_clone_failed: Called with the clone (or precondition) failure message.
        on_finish_progress: Called exactly once when the flow ends.
    """

    url: str = ""
    bundle_path: str = ""
    branch: str | None = None
    folder_name: str | None = None
    on_progress: GitProgressCallback | None = None
    restart_after_install: bool = False
    restart_delay: int | None = None
    on_pull_success: Callable[[], None] | None = None
    on_pull_failed: Callable[[str], None] | None = None
    on_clone_success: Callable[[], None] | None = None
    on_clone_failed: Callable[[str], None] | None = None
    on_finish_progress: Callable[[], None] | None = None


class PullResult(BaseModel):
    """Outcome of updating an existing git checkout."""

    success: bool = Field(..., description="Whether the pull succeeded")
    msg: str = Field(default="", description="Failure message")


class CloneResult(BaseModel):
    """Outcome of creating a fresh git checkout."""

    success: bool = Field(..., description="Whether the clone succeeded")
    msg: str = Field(default="", description="Failure message")
    bundle: str | None = Field(
        default=None,
        description="Absolute path of the bundle inside the new working tree",
    )


class UpdateWarning(BaseModel):
    """A non-fatal problem that occurred after the bundle was activated."""

    kind: str = Field(
        ...,
        description="Problem kind, e.g. 'version_persistence_failed'",
    )
    detail: str = Field(..., description="Human-readable detail")


class UpdateOutcome(BaseModel):
    """
    Result of one update invocation.

    Every flow returns an outcome instead of raising. Failures are also
    reported through the option callbacks.

    Attributes:
        ok: Whether the update was committed.
        error: Failure kind when ok is False.
        detail: Failure detail when ok is False.
        stage: Last stage reached.
        version: Declared version of the update, if any.
        restart_scheduled: Whether a restart was scheduled.
        warnings: Post-commit problems that did not undo the update.
    """

    ok: bool = Field(..., description="Whether the update was committed")
    error: UpdateErrorKind | None = Field(
        default=None,
        description="Failure kind when the update failed",
    )
    detail: str | None = Field(
        default=None,
        description="Failure detail when the update failed",
    )
    stage: UpdateStage = Field(
        default=UpdateStage.VALIDATING,
        description="Last stage reached",
    )
    version: int | None = Field(
        default=None,
        description="Declared version of the update",
    )
    restart_scheduled: bool = Field(
        default=False,
        description="Whether an application restart was scheduled",
    )
    warnings: list[UpdateWarning] = Field(
        default_factory=list,
        description="Post-commit problems",
    )
