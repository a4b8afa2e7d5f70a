"""Caller-defined context blobs: size bound and structural deep merge."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from task_tracker.errors import ValidationError

DEFAULT_CONTEXT_MAX_BYTES = 65_536


def serialize_json(value: Mapping[str, Any]) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def ensure_context_size(
    context: Mapping[str, Any],
    *,
    max_bytes: int = DEFAULT_CONTEXT_MAX_BYTES,
    label: str = "Context",
) -> None:
    """Raise when ``context`` is not an object or serializes past ``max_bytes``."""

    if not isinstance(context, Mapping):
        raise ValidationError(f"{label} must be a JSON object")
    size = len(serialize_json(context).encode("utf-8"))
    if size > max_bytes:
        raise ValidationError(
            f"{label} exceeds {max_bytes // 1024}KB limit ({size} bytes serialized)",
        )


def deep_merge(target: Mapping[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``source`` into a copy of ``target``.

    Mapping values present on both sides are merged recursively; any other
    value from ``source`` replaces the one in ``target``.
    """

    result = dict(target)
    for key, source_value in source.items():
        target_value = result.get(key)
        if isinstance(source_value, Mapping) and isinstance(target_value, Mapping):
            result[key] = deep_merge(target_value, source_value)
        else:
            result[key] = source_value
    return result
