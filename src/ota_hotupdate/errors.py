"""
Error types for OTA hot update.

This module defines the UpdateError base class and one subclass per failure
kind. Collaborators (transports, stores, activation services) raise these;
the orchestrator catches them and reports them as outcomes and callbacks so
that no update call ever raises past its boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class UpdateErrorKind(str, Enum):
    """Failure kinds reported by the update flows."""

    INVALID_INPUT = "invalid_input"
    VERSION_REJECTED = "version_rejected"
    TRANSFER_FAILED = "transfer_failed"
    TRANSPORT_ERROR = "transport_error"
    ACTIVATION_FAILED = "activation_failed"
    METADATA_SERIALIZATION_FAILED = "metadata_serialization_failed"
    PULL_FAILED = "pull_failed"
    CLONE_FAILED = "clone_failed"


class UpdateError(Exception):
    """
    Base exception class for update failures.

    Attributes:
        error_code: Error kind string (one of UpdateErrorKind values).
        message: Human-readable error message.
        details: Optional structured details (e.g., URI, versions).

    Example:
        >>> raise UpdateError(
        ...     error_code="version_rejected",
        ...     message="Declared version 3 is not newer than 5",
        ...     details={"declared": 3, "current": 5},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdateError.

        Args:
            error_code: Error kind string identifying the failure category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    @property
    def kind(self) -> UpdateErrorKind:
        """Return the error code as an UpdateErrorKind."""
        return UpdateErrorKind(self.error_code)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(UpdateError):
    """A required input (URL, bundle path) is missing or malformed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidInputError."""
        super().__init__(
            error_code=UpdateErrorKind.INVALID_INPUT.value,
            message=message,
            details=details,
        )


class VersionRejectedError(UpdateError):
    """The declared version is not greater than the stored version."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a VersionRejectedError."""
        super().__init__(
            error_code=UpdateErrorKind.VERSION_REJECTED.value,
            message=message,
            details=details,
        )


class TransferFailedError(UpdateError):
    """The transport completed but produced no usable artifact."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a TransferFailedError."""
        super().__init__(
            error_code=UpdateErrorKind.TRANSFER_FAILED.value,
            message=message,
            details=details,
        )


class TransportError(UpdateError):
    """
    The transport itself failed (network error, HTTP error, git failure).

    Transports raise this error; the orchestrator reports it through the
    failure callback.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a TransportError."""
        super().__init__(
            error_code=UpdateErrorKind.TRANSPORT_ERROR.value,
            message=message,
            details=details,
        )


class ActivationFailedError(UpdateError):
    """The activation service could not make the bundle active."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ActivationFailedError."""
        super().__init__(
            error_code=UpdateErrorKind.ACTIVATION_FAILED.value,
            message=message,
            details=details,
        )


class MetadataSerializationError(UpdateError):
    """Metadata could not be serialized to or parsed from its text form."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a MetadataSerializationError."""
        super().__init__(
            error_code=UpdateErrorKind.METADATA_SERIALIZATION_FAILED.value,
            message=message,
            details=details,
        )


class PullFailedError(UpdateError):
    """Updating an existing git checkout failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a PullFailedError."""
        super().__init__(
            error_code=UpdateErrorKind.PULL_FAILED.value,
            message=message,
            details=details,
        )


class CloneFailedError(UpdateError):
    """Creating a fresh git checkout failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a CloneFailedError."""
        super().__init__(
            error_code=UpdateErrorKind.CLONE_FAILED.value,
            message=message,
            details=details,
        )
