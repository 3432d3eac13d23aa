"""Row image diffing with structural comparison.

Values are compared by their canonical JSON serialization, so nested
documents with the same content compare equal regardless of key order,
matching JSONB `IS DISTINCT FROM` semantics in the trigger.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic_core import to_jsonable_python


def to_document(row: Mapping[str, Any]) -> dict[str, Any]:
    """JSON-safe copy of a row image (UUIDs, datetimes, enums, decimals)."""
    return to_jsonable_python(dict(row))


def _canonical(value: Any) -> str:
    return json.dumps(to_jsonable_python(value), sort_keys=True, separators=(",", ":"))


def values_differ(old: Any, new: Any) -> bool:
    return _canonical(old) != _canonical(new)


def changed_fields(old: Mapping[str, Any], new: Mapping[str, Any]) -> list[str]:
    """Names of keys in `new` whose value differs from `old`, sorted.

    A key missing from `old` counts as changed.
    """
    return sorted(key for key, value in new.items() if key not in old or values_differ(old[key], value))
