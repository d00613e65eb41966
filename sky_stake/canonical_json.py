"""
Canonical JSON serialization for diagnostics and deterministic output.

Sorted keys, no whitespace, UTF-8. Values that are not JSON-native are
rendered as their type name so capability objects never leak their contents.
"""

import json
from typing import Any


def canonical_json(obj: Any) -> str:
    """
    Serialize object to canonical JSON string.

    Rules:
    - Keys sorted alphabetically (recursive)
    - No whitespace
    - UTF-8 encoding (no ASCII escapes for non-ASCII chars)
    - Unknown objects fall back to their type name, never their contents
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=_opaque,
    )


def _opaque(value: Any) -> str:
    return f"<{type(value).__name__}>"
