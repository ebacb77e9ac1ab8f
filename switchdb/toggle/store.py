"""
Toggle store: last-writer-wins switch state on a key-value backend.

ToggleStore records switch events per identity and exposes the current
value. The winner is the event with the greatest created_at, whatever order
the events arrive in. There is no client-side locking; every guarantee
comes from the backend's atomic conditional transaction.

Save protocol:

    Phase 1  [Update LATEST if stored created_at < new, Put SWITCH#<ts>]
             committed                      -> UPDATED
             failed, old LATEST returned    -> DROPPED (older or equal event)
             failed, nothing returned       -> no LATEST yet, Phase 2
    Phase 2  [Put LATEST if it does not exist, Put SWITCH#<ts>]
             committed                      -> CREATED
             failed                         -> someone else created LATEST;
                                               back off, restart Phase 1

Invariants:
    - LATEST.created_at >= created_at of every committed log row
    - LATEST only moves forward (strictly greater created_at)
    - A log row is written only in the same transaction as the LATEST
      transition it records; dropped events leave nothing behind
    - Condition failures never reach the caller; every other backend error
      does, unchanged

How to change safely:
    - Never write LATEST outside a guarded transaction
    - Keep the log put in both phases' transactions
    - Run the concurrent-creation tests after touching the retry loop
"""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Awaitable, List, Optional, TypeVar

from ..config import RetryConfig, StoreConfig
from ..errors import ConflictError, DeadlineExceededError, SwitchNotFoundError
from ..kv import (
    PARTITION_KEY,
    SORT_KEY,
    And,
    AttributeExists,
    ConditionCheckFailedError,
    KeyValueBackend,
    Not,
    Put,
    Update,
    less_than,
)
from .models import (
    CREATED_AT_ATTR,
    LOG_PREFIX,
    STATE_ATTR,
    Switch,
    latest_key,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

LATEST_MISSING = Not(And(AttributeExists(PARTITION_KEY), AttributeExists(SORT_KEY)))


class SaveOutcome(Enum):
    """What a save did to the stored state."""

    UPDATED = "updated"
    CREATED = "created"
    DROPPED = "dropped"


class ToggleStore:
    """Stores switch events and answers with the latest one per identity.

    Attributes:
        backend: Key-value backend holding latest and log rows
        retry: Creation-race retry budget and backoff
        request_timeout_seconds: Default per-call deadline (None: no deadline)

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> store = ToggleStore(backend)
        >>> await store.save(Switch("123", True, datetime.now(timezone.utc)))
        <SaveOutcome.CREATED: 'created'>
        >>> (await store.latest("123")).state
        True
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        retry: Optional[RetryConfig] = None,
        request_timeout_seconds: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.backend = backend
        self.retry = retry or RetryConfig()
        self.request_timeout_seconds = request_timeout_seconds
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: StoreConfig, backend: KeyValueBackend) -> ToggleStore:
        return cls(
            backend,
            retry=config.retry,
            request_timeout_seconds=config.request_timeout_seconds,
        )

    async def save(self, switch: Switch, timeout: Optional[float] = None) -> SaveOutcome:
        """Record a switch event.

        Returns normally when the event is older than (or as old as) the
        stored latest switch; such events are dropped without a trace.

        Args:
            switch: Event to record
            timeout: Deadline for the whole call in seconds, including
                retries (defaults to request_timeout_seconds)

        Returns:
            SaveOutcome describing what happened

        Raises:
            ConflictError: If the creation race was lost on every attempt
            DeadlineExceededError: If the deadline passed
            BackendUnavailableError: On backend failure
        """
        return await self._with_deadline("save", self._save(switch), timeout)

    async def latest(self, switch_id: str, timeout: Optional[float] = None) -> Switch:
        """Return the switch with the greatest created_at saved for an id.

        Raises:
            SwitchNotFoundError: If nothing was ever saved for switch_id
            DeadlineExceededError: If the deadline passed
            BackendUnavailableError: On backend failure
        """
        return await self._with_deadline("latest", self._latest(switch_id), timeout)

    async def history(
        self,
        switch_id: str,
        limit: Optional[int] = None,
        newest_first: bool = False,
        timeout: Optional[float] = None,
    ) -> List[Switch]:
        """Return the accepted switches of an id, ordered by created_at.

        Only events that became the latest switch when saved are listed.
        Unknown ids yield an empty list.
        """
        if limit is not None and limit < 1:
            raise ValueError("limit must be positive")
        items = await self._with_deadline(
            "history",
            self.backend.query(
                switch_id,
                sort_prefix=LOG_PREFIX,
                limit=limit,
                ascending=not newest_first,
            ),
            timeout,
        )
        return [Switch.from_item(item) for item in items]

    async def _save(self, switch: Switch) -> SaveOutcome:
        log_put = Put(switch.as_log_item())
        compare_and_swap = Update(
            key=latest_key(switch.id),
            set={
                CREATED_AT_ATTR: switch.encoded_created_at,
                STATE_ATTR: switch.state,
            },
            condition=less_than(CREATED_AT_ATTR, switch.encoded_created_at),
            return_old_on_failure=True,
        )
        create_latest = Put(switch.as_latest_item(), condition=LATEST_MISSING)
        context = {"id": switch.id, "created_at": switch.encoded_created_at}

        attempts = self.retry.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self.backend.transact_write([compare_and_swap, log_put])
                logger.debug("Switch updated", extra=context)
                return SaveOutcome.UPDATED
            except ConditionCheckFailedError as e:
                if e.reasons and e.reasons[0].item:
                    logger.debug(
                        "Dropped out-of-order switch",
                        extra={
                            **context,
                            "stored_created_at": e.reasons[0].item.get(CREATED_AT_ATTR),
                        },
                    )
                    return SaveOutcome.DROPPED

            try:
                await self.backend.transact_write([create_latest, log_put])
                logger.debug("Switch created", extra=context)
                return SaveOutcome.CREATED
            except ConditionCheckFailedError:
                logger.debug("Lost switch creation race", extra={**context, "attempt": attempt})

            if attempt < attempts:
                await asyncio.sleep(self._backoff(attempt))

        logger.warning(
            "Giving up on switch after repeated creation races",
            extra={**context, "attempts": attempts},
        )
        raise ConflictError(switch.id, attempts)

    async def _latest(self, switch_id: str) -> Switch:
        item = await self.backend.get(latest_key(switch_id))
        if not item:
            raise SwitchNotFoundError(switch_id)
        return Switch.from_item(item)

    def _backoff(self, attempt: int) -> float:
        """Seconds to sleep after the given failed attempt (1-based)."""
        base = self.retry.base_delay_ms * (2 ** (attempt - 1))
        jittered = base * (0.8 + 0.4 * self._rng.random())
        return min(self.retry.max_delay_ms, jittered) / 1000.0

    async def _with_deadline(
        self,
        operation: str,
        call: Awaitable[T],
        timeout: Optional[float],
    ) -> T:
        if timeout is None:
            timeout = self.request_timeout_seconds
        if timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            raise DeadlineExceededError(operation, timeout) from None
