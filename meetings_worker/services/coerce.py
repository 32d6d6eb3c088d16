from __future__ import annotations

from collections.abc import Mapping
from typing import Any, List

# Envelope keys checked in order; "meetings" is the Fathom proxy shape.
ENVELOPE_KEYS = ("data", "items", "meetings")


def ensure_array(value: Any) -> List[Any]:
    """Extract a list of records from a bare list or a known envelope.

    Unrecognized shapes (None, scalars, mappings without a list under one of
    the envelope keys) degrade to an empty list; this never raises.
    """
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, Mapping):
        for key in ENVELOPE_KEYS:
            inner = value.get(key)
            if isinstance(inner, list):
                return inner
    return []
