"""
Switch model and its row encodings.

A switch is persisted as two rows in the partition of its id:

    pk=<id>, sk=LATEST_SWITCH            mutable pointer to the current state
    pk=<id>, sk=SWITCH#<created_at>      write-once record of an accepted event

created_at is stored as a fixed-width UTC string with microsecond
precision, so string order is time order and the backends can compare it
without knowing it is a timestamp.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from ..kv import PARTITION_KEY, SORT_KEY, Item, Key

LATEST_SORT_KEY = "LATEST_SWITCH"
LOG_PREFIX = "SWITCH#"

STATE_ATTR = "state"
CREATED_AT_ATTR = "created_at"

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def encode_timestamp(value: datetime) -> str:
    """Encode a datetime as a sortable UTC string.

    Naive datetimes are taken to be UTC.

    Example:
        >>> encode_timestamp(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
        '2024-05-01T12:00:00.000000Z'
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    # strftime does not zero-pad years below 1000 on every platform
    return f"{value.year:04d}-" + value.strftime("%m-%dT%H:%M:%S.%fZ")


def decode_timestamp(value: str) -> datetime:
    """Inverse of encode_timestamp.

    Raises:
        ValueError: If value is not in the stored format
    """
    return datetime.strptime(value, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def latest_key(switch_id: str) -> Key:
    return Key(switch_id, LATEST_SORT_KEY)


def log_key(switch_id: str, created_at: datetime) -> Key:
    return Key(switch_id, LOG_PREFIX + encode_timestamp(created_at))


@dataclass(frozen=True)
class Switch:
    """A toggle event for one identity.

    Attributes:
        id: Identity the switch belongs to
        state: On/off value
        created_at: When the event happened (domain time, not arrival time)
    """

    id: str
    state: bool
    created_at: datetime

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Switch id must not be empty")
        # Normalized to the persisted precision and zone
        object.__setattr__(self, "created_at", decode_timestamp(encode_timestamp(self.created_at)))

    @property
    def encoded_created_at(self) -> str:
        return encode_timestamp(self.created_at)

    def as_latest_item(self) -> Item:
        return self._as_item(LATEST_SORT_KEY)

    def as_log_item(self) -> Item:
        return self._as_item(LOG_PREFIX + self.encoded_created_at)

    def _as_item(self, sort_key: str) -> Item:
        return {
            PARTITION_KEY: self.id,
            SORT_KEY: sort_key,
            STATE_ATTR: self.state,
            CREATED_AT_ATTR: self.encoded_created_at,
        }

    @classmethod
    def from_item(cls, item: Item) -> Switch:
        """Decode a latest or log row.

        Raises:
            ValueError: If required attributes are missing or malformed
        """
        try:
            switch_id = item[PARTITION_KEY]
            state = item[STATE_ATTR]
            created_at = item[CREATED_AT_ATTR]
        except KeyError as e:
            raise ValueError(f"Switch item is missing attribute {e}") from None
        if not isinstance(state, bool):
            raise ValueError(f"Switch state must be a boolean, got {type(state).__name__}")
        if not isinstance(created_at, str):
            raise ValueError("Switch created_at must be an encoded timestamp string")
        return cls(id=switch_id, state=state, created_at=decode_timestamp(created_at))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "state": self.state, "created_at": self.encoded_created_at}
