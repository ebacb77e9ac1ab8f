"""
SwitchDB - last-writer-wins toggle state on conditional key-value writes.

This package records an ordered series of switch events per identity and
exposes the current value, ordered by event timestamp rather than arrival
order. It is built on:
- A key-value backend protocol whose only write is an atomic conditional
  transaction (DynamoDB, SQLite or in-memory)
- A two-row layout per identity: a mutable LATEST_SWITCH pointer and
  write-once SWITCH#<timestamp> log rows

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────────┐
    │   Caller    │────▶│ ToggleStore │────▶│   KeyValueBackend    │
    │  (or CLI)   │     │ save/latest │     │ get / transact_write │
    └─────────────┘     └─────────────┘     └──────────┬───────────┘
                                                       │
                               ┌───────────────────────┼───────────────┐
                               ▼                       ▼               ▼
                          ┌─────────┐            ┌─────────┐      ┌─────────┐
                          │DynamoDB │            │ SQLite  │      │ Memory  │
                          └─────────┘            └─────────┘      └─────────┘

Invariants:
    - LATEST_SWITCH only moves to strictly newer created_at values
    - Log rows exist only for events that won
    - No read-modify-write outside a guarded transaction

How to change safely:
    - New storage engines implement switchdb.kv.KeyValueBackend
    - Protocol changes must keep the concurrent-creation tests green

Version: see _version.py.
"""

from ._version import __version__
from .errors import ConflictError, DeadlineExceededError, SwitchNotFoundError, ToggleError
from .toggle import SaveOutcome, Switch, ToggleStore

__all__ = [
    "__version__",
    "Switch",
    "SaveOutcome",
    "ToggleStore",
    "ToggleError",
    "SwitchNotFoundError",
    "ConflictError",
    "DeadlineExceededError",
]
