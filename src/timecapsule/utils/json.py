import json
from typing import Any


def canonical_json(obj: Any) -> bytes:
    """Sorted, compact UTF-8 encoding used for hashing."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")
