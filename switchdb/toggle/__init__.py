"""
Toggle module for SwitchDB - last-writer-wins switch state.

This module handles:
- The Switch model and its latest/log row encodings
- The save/latest/history protocol on top of a KeyValueBackend

Invariants:
    - The latest switch of an id is the one with the greatest created_at
    - Out-of-order events are dropped, not stored
    - Only backend transactions provide atomicity; no client-side locks
"""

from .models import (
    LATEST_SORT_KEY,
    LOG_PREFIX,
    Switch,
    decode_timestamp,
    encode_timestamp,
)
from .store import SaveOutcome, ToggleStore

__all__ = [
    "Switch",
    "SaveOutcome",
    "ToggleStore",
    "LATEST_SORT_KEY",
    "LOG_PREFIX",
    "encode_timestamp",
    "decode_timestamp",
]
