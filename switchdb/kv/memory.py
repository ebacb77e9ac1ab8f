"""
In-memory key-value backend for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Local development without external dependencies
- Deterministic race testing of the toggle protocol

Invariants:
    - All data is lost on process exit
    - Transactions are atomic and serialized by a single asyncio lock
    - Every call yields to the event loop once before touching state, so
      concurrent coroutines interleave the way network calls would

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep semantics identical to the DynamoDB backend (conditions on
      missing items, ALL_OLD on failure, one op per key)
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .base import (
    CONDITION_FAILED,
    NO_FAILURE,
    SORT_KEY,
    BackendConnectionError,
    CancellationReason,
    ConditionCheckFailedError,
    Item,
    Key,
    WriteOp,
    apply_write,
    check_ops,
)

logger = logging.getLogger(__name__)


class InMemoryBackend:
    """In-memory implementation of KeyValueBackend for testing.

    Attributes:
        transaction_count: Committed transactions
        cancelled_count: Transactions cancelled by condition failures

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.transact_write([Put({"pk": "1", "sk": "a", "x": 1})])
        >>> backend.items()
        [{'pk': '1', 'sk': 'a', 'x': 1}]
    """

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], Item] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._failures: List[Exception] = []
        self.transaction_count = 0
        self.cancelled_count = 0

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryBackend connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._items.clear()
        logger.debug("InMemoryBackend closed")

    async def get(self, key: Key) -> Optional[Item]:
        await self._enter()
        async with self._lock:
            item = self._items.get((key.partition, key.sort))
            return copy.deepcopy(item) if item is not None else None

    async def transact_write(self, ops: Sequence[WriteOp]) -> None:
        check_ops(ops)
        await self._enter()

        async with self._lock:
            existing = [self._items.get((op.key.partition, op.key.sort)) for op in ops]

            reasons = []
            failed = False
            for op, current in zip(ops, existing):
                if op.condition is None or op.condition.evaluate(current):
                    reasons.append(CancellationReason(NO_FAILURE))
                    continue
                failed = True
                returned = (
                    copy.deepcopy(current)
                    if op.return_old_on_failure and current is not None
                    else None
                )
                reasons.append(CancellationReason(CONDITION_FAILED, returned))

            if failed:
                self.cancelled_count += 1
                raise ConditionCheckFailedError(reasons)

            for op, current in zip(ops, existing):
                self._items[(op.key.partition, op.key.sort)] = copy.deepcopy(
                    apply_write(op, current)
                )
            self.transaction_count += 1

        logger.debug(
            "Transaction committed to in-memory backend",
            extra={"keys": [str(op.key) for op in ops]},
        )

    async def query(
        self,
        partition: str,
        sort_prefix: str = "",
        limit: Optional[int] = None,
        ascending: bool = True,
    ) -> List[Item]:
        await self._enter()
        async with self._lock:
            matched = [
                copy.deepcopy(item)
                for (pk, sk), item in self._items.items()
                if pk == partition and sk.startswith(sort_prefix)
            ]
        matched.sort(key=lambda item: item[SORT_KEY], reverse=not ascending)
        if limit is not None:
            matched = matched[:limit]
        return matched

    async def _enter(self) -> None:
        if not self._connected:
            raise BackendConnectionError("Not connected")
        await asyncio.sleep(0)
        if self._failures:
            raise self._failures.pop(0)

    # Testing helpers

    def fail_next(self, exception: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls raise ``exception`` (testing helper)."""
        self._failures.extend([exception] * times)

    def items(self, partition: Optional[str] = None) -> List[Item]:
        """All stored items, sorted by key (testing helper)."""
        return [
            copy.deepcopy(item)
            for (pk, _), item in sorted(self._items.items())
            if partition is None or pk == partition
        ]

    def put_raw(self, item: Item) -> None:
        """Store an item bypassing transactions (testing helper)."""
        key = Key.of(item)
        self._items[(key.partition, key.sort)] = copy.deepcopy(item)
