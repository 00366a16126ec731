"""
Update metadata serialization.

Metadata is an opaque, caller-supplied value stored alongside the current
version. It is persisted as JSON text, so only values that survive a
serialize/deserialize round trip unchanged are accepted: dicts with string
keys, lists, strings, integers, finite floats, booleans and None.
"""

from __future__ import annotations

import json
import math
from typing import Any, TypeAlias

from ota_hotupdate.errors import MetadataSerializationError

Metadata: TypeAlias = dict[str, Any] | list[Any] | str | int | float | bool | None


def _find_invalid(value: Any, path: str) -> str | None:
    """Return the path of the first non-round-trippable element, if any."""
    if value is None or isinstance(value, (str, bool, int)):
        return None
    if isinstance(value, float):
        return None if math.isfinite(value) else path
    if isinstance(value, list):
        for index, item in enumerate(value):
            invalid = _find_invalid(item, f"{path}[{index}]")
            if invalid is not None:
                return invalid
        return None
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                return f"{path}.{key!r}"
            invalid = _find_invalid(item, f"{path}.{key}")
            if invalid is not None:
                return invalid
        return None
    return path


def validate_metadata(value: Any) -> Metadata:
    """
    Check that a value can be stored as update metadata.

    Args:
        value: Candidate metadata value.

    Returns:
        The value, unchanged.

    Raises:
        MetadataSerializationError: If the value (or a nested element) is not
            JSON-representable without loss.
    """
    invalid = _find_invalid(value, "$")
    if invalid is not None:
        raise MetadataSerializationError(
            "Failed to stringify metadata",
            details={"path": invalid},
        )
    return value


def serialize_metadata(value: Any) -> str:
    """
    Serialize metadata to its persisted text form.

    Raises:
        MetadataSerializationError: If the value is not JSON-representable.
    """
    validate_metadata(value)
    try:
        return json.dumps(value, allow_nan=False, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise MetadataSerializationError(
            "Failed to stringify metadata",
            details={"error": str(e)},
        ) from e


def deserialize_metadata(text: str | None) -> Metadata:
    """
    Parse persisted metadata text.

    An absent or empty text means no metadata was stored and yields None.

    Raises:
        MetadataSerializationError: If the text is not valid JSON.
    """
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError as e:
        raise MetadataSerializationError(
            "Error parsing metadata",
            details={"error": str(e)},
        ) from e
