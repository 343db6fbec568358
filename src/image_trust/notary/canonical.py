"""
Canonical JSON encoding used for TUF signatures and key IDs.
"""

import json
from typing import Any


def canonical_json(value: Any) -> bytes:
    """Encode a value with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(',', ':'), ensure_ascii=False).encode('utf-8')
