"""
Base protocol and types for the key-value backend abstraction.

This module defines the KeyValueBackend protocol that all storage engines
must implement, along with the write operations, cancellation reasons and
errors shared by every backend.

Invariants:
    - Items are addressed by a composite key (partition, sort)
    - transact_write() applies every op or none of them
    - A transaction cancelled only by condition failures raises
      ConditionCheckFailedError; every other failure is a
      BackendUnavailableError
    - Conditions are evaluated against the item as it exists when the
      transaction runs (an absent item evaluates as an empty one)

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the cancellation reason codes aligned with DynamoDB's
    - Run the shared backend tests against every implementation
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
    TYPE_CHECKING,
)
import logging

from .conditions import Condition

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)

PARTITION_KEY = "pk"
SORT_KEY = "sk"

CONDITION_FAILED = "ConditionalCheckFailed"
NO_FAILURE = "None"

Item = Dict[str, Any]


class KvError(Exception):
    """Base exception for key-value backend operations."""
    pass


class BackendUnavailableError(KvError):
    """Low-level I/O or service failure of the backing store."""
    pass


class BackendConnectionError(BackendUnavailableError):
    """Connection to the backend failed or was never established."""
    pass


class BackendTimeoutError(BackendUnavailableError):
    """Backend operation timed out."""
    pass


@dataclass(frozen=True)
class CancellationReason:
    """Why a single op of a cancelled transaction failed.

    Attributes:
        code: CONDITION_FAILED for an op whose condition did not hold,
            NO_FAILURE for ops that were fine but rolled back with the group
        item: The item as it existed before the transaction, returned only
            when the op asked for it and the item exists
    """
    code: str = NO_FAILURE
    item: Optional[Item] = None

    @property
    def condition_failed(self) -> bool:
        return self.code == CONDITION_FAILED


class ConditionCheckFailedError(KvError):
    """A transaction was cancelled because one or more conditions failed.

    Nothing was written. ``reasons`` has one entry per op, in op order.
    """

    def __init__(self, reasons: Sequence[CancellationReason]) -> None:
        codes = ", ".join(r.code for r in reasons)
        super().__init__(f"Transaction cancelled, reasons: [{codes}]")
        self.reasons: List[CancellationReason] = list(reasons)


@dataclass(frozen=True)
class Key:
    """Composite primary key of an item."""
    partition: str
    sort: str

    def to_dict(self) -> Item:
        return {PARTITION_KEY: self.partition, SORT_KEY: self.sort}

    @classmethod
    def of(cls, item: Item) -> Key:
        """Extract the key of a full item."""
        try:
            return cls(partition=item[PARTITION_KEY], sort=item[SORT_KEY])
        except KeyError as e:
            raise ValueError(f"Item is missing key attribute {e}") from None

    def __str__(self) -> str:
        return f"{self.partition}/{self.sort}"


@dataclass(frozen=True)
class Put:
    """Write a whole item, replacing any existing one with the same key.

    Attributes:
        item: Full item including the key attributes
        condition: Optional guard evaluated against the existing item
        return_old_on_failure: Return the existing item in the cancellation
            reason if the condition fails
    """
    item: Item
    condition: Optional[Condition] = None
    return_old_on_failure: bool = False

    @property
    def key(self) -> Key:
        return Key.of(self.item)


@dataclass(frozen=True)
class Update:
    """Set attributes on an item, creating it if absent.

    Attributes:
        key: Key of the item to update
        set: Attribute values to assign
        condition: Optional guard evaluated against the existing item
        return_old_on_failure: Return the existing item in the cancellation
            reason if the condition fails
    """
    key: Key
    set: Item = field(default_factory=dict)
    condition: Optional[Condition] = None
    return_old_on_failure: bool = False


WriteOp = Union[Put, Update]


def apply_write(op: WriteOp, existing: Optional[Item]) -> Item:
    """Compute the item that results from applying ``op`` to ``existing``."""
    if isinstance(op, Put):
        return dict(op.item)
    updated = dict(existing) if existing else op.key.to_dict()
    updated.update(op.set)
    return updated


def check_ops(ops: Sequence[WriteOp]) -> None:
    """Reject transactions a real backend would refuse outright.

    Raises:
        ValueError: If ops is empty or two ops target the same key
    """
    if not ops:
        raise ValueError("Transaction requires at least one operation")
    seen = set()
    for op in ops:
        key = op.key
        if key in seen:
            raise ValueError(f"Transaction touches {key} more than once")
        seen.add(key)


@runtime_checkable
class KeyValueBackend(Protocol):
    """Protocol for key-value storage backends.

    The only write primitive is an atomic, conditional, multi-item
    transaction. Backends guarantee:
        - all ops commit together or none does
        - every condition is checked against the state the transaction sees
        - concurrent transactions on the same key serialize

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.transact_write([Put({"pk": "a", "sk": "b"})])
        >>> await backend.get(Key("a", "b"))
        {'pk': 'a', 'sk': 'b'}
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            BackendConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections and clients."""
        ...

    @abstractmethod
    async def get(self, key: Key) -> Optional[Item]:
        """Fetch a single item by key.

        Returns:
            The item, or None if it does not exist

        Raises:
            BackendUnavailableError: On I/O or service failure
        """
        ...

    @abstractmethod
    async def transact_write(self, ops: Sequence[WriteOp]) -> None:
        """Apply all ops atomically if every condition holds.

        Args:
            ops: Puts and updates, each targeting a distinct key

        Raises:
            ConditionCheckFailedError: If any condition failed; nothing written
            BackendUnavailableError: On I/O or service failure
            ValueError: If ops is empty or repeats a key
        """
        ...

    @abstractmethod
    async def query(
        self,
        partition: str,
        sort_prefix: str = "",
        limit: Optional[int] = None,
        ascending: bool = True,
    ) -> List[Item]:
        """List items of one partition whose sort key starts with a prefix.

        Items are ordered by sort key.

        Raises:
            BackendUnavailableError: On I/O or service failure
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_backend(config: "StoreConfig") -> KeyValueBackend:
    """Factory function to create a backend from configuration.

    Args:
        config: Store configuration

    Returns:
        Appropriate KeyValueBackend implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import BackendKind
    from .dynamodb import DynamoDBBackend
    from .memory import InMemoryBackend
    from .sqlite import SqliteBackend

    if config.backend == BackendKind.MEMORY:
        return InMemoryBackend()
    elif config.backend == BackendKind.SQLITE:
        return SqliteBackend(
            config.sqlite.path,
            wal_mode=config.sqlite.wal_mode,
            busy_timeout_ms=config.sqlite.busy_timeout_ms,
        )
    elif config.backend == BackendKind.DYNAMODB:
        return DynamoDBBackend(config.dynamodb)
    else:
        raise ValueError(f"Unsupported backend: {config.backend}")
