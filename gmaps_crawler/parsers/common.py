"""
Shared helpers for Google Maps response bodies.

Google prefixes JSON bodies with an anti-hijacking guard (")]}'" or the
'/*""*/' wrapper used by search XHRs) and returns positional arrays with no
field names, so every accessor here tolerates missing positions.
"""

import json
from typing import Any, Optional

XSSI_PREFIX = ")]}'"
SEARCH_WRAPPER_PREFIX = '/*""*/'


def safe_get(obj: Any, *indices, default=None) -> Any:
    """Safely traverse nested structures"""
    try:
        current = obj
        for idx in indices:
            if current is None:
                return default
            if isinstance(current, list) and isinstance(idx, int):
                if -len(current) <= idx < len(current):
                    current = current[idx]
                else:
                    return default
            elif isinstance(current, dict):
                current = current.get(idx, default)
            else:
                return default
        return default if current is None else current
    except (IndexError, KeyError, TypeError):
        return default


def strip_xssi_prefix(text: str) -> str:
    """Remove the anti-hijacking guard from a response body"""
    text = text.lstrip()
    for prefix in (XSSI_PREFIX, SEARCH_WRAPPER_PREFIX):
        if text.startswith(prefix):
            return text[len(prefix):].lstrip()
    return text


def load_guarded_json(body: Any) -> Any:
    """
    Parse a guarded JSON body.

    Args:
        body: Response body as str or bytes

    Returns:
        The parsed JSON value

    Raises:
        ValueError: If the body is not valid JSON once the guard is removed
    """
    if isinstance(body, (bytes, bytearray)):
        body = body.decode('utf-8', errors='replace')
    return json.loads(strip_xssi_prefix(body))


def fix_float(value: Any) -> Optional[float]:
    """Round coordinates to 7 decimals, None for non-numbers"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return round(float(value), 7)
