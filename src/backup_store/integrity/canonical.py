"""
Canonical encoding for deterministic hashing.

Ensures the same entry tree always serializes to the same bytes, so it
is stored exactly once.
"""

import json
from typing import Any


def canonical_json(obj: Any) -> bytes:
    """
    Encode an object to canonical JSON bytes.

    Rules:
    - Keys sorted alphabetically
    - No whitespace
    - UTF-8 encoding
    - No trailing newlines

    Same input always produces same output.
    """
    json_str = json.dumps(
        obj,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False,
        allow_nan=False,
    )
    return json_str.encode('utf-8')


def decode_json(data: bytes) -> Any:
    """
    Decode JSON bytes produced by :func:`canonical_json`.

    Raises ValueError for undecodable input.
    """
    try:
        return json.loads(data.decode('utf-8'))
    except UnicodeDecodeError as e:
        raise ValueError(f"Not UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Not JSON: {e}") from e
