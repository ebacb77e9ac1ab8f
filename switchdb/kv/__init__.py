"""
Key-value backend abstraction for SwitchDB.

This module provides a pluggable storage interface supporting:
- AWS DynamoDB (production)
- SQLite (single host, embedded)
- In-memory (for testing)

The only write primitive is an atomic conditional transaction over a small
group of items. Everything the toggle protocol guarantees rests on it.

Invariants:
    - transact_write() commits all ops or none
    - Condition failures are reported per op, with the old item on request
    - Reads return the latest committed state

How to change safely:
    - New backends must implement the KeyValueBackend protocol
    - Add the new backend to the fixture in tests/integration/test_kv_backends.py
"""

from .base import (
    CONDITION_FAILED,
    NO_FAILURE,
    PARTITION_KEY,
    SORT_KEY,
    BackendConnectionError,
    BackendTimeoutError,
    BackendUnavailableError,
    CancellationReason,
    ConditionCheckFailedError,
    Item,
    Key,
    KeyValueBackend,
    KvError,
    Put,
    Update,
    WriteOp,
    create_backend,
)
from .conditions import (
    And,
    AttributeExists,
    AttributeNotExists,
    Compare,
    Condition,
    Not,
    equal,
    less_than,
)
from .dynamodb import DynamoDBBackend
from .memory import InMemoryBackend
from .sqlite import SqliteBackend

__all__ = [
    # Protocol and types
    "KeyValueBackend",
    "Key",
    "Item",
    "Put",
    "Update",
    "WriteOp",
    "CancellationReason",
    "PARTITION_KEY",
    "SORT_KEY",
    "CONDITION_FAILED",
    "NO_FAILURE",
    # Errors
    "KvError",
    "BackendUnavailableError",
    "BackendConnectionError",
    "BackendTimeoutError",
    "ConditionCheckFailedError",
    # Conditions
    "Condition",
    "Compare",
    "AttributeExists",
    "AttributeNotExists",
    "And",
    "Not",
    "equal",
    "less_than",
    # Factory
    "create_backend",
    # Implementations
    "DynamoDBBackend",
    "InMemoryBackend",
    "SqliteBackend",
]
