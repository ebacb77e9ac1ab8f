"""
Unit tests for the Switch model and row encodings.
"""

from datetime import datetime, timedelta, timezone

import pytest

from switchdb.toggle.models import (
    LATEST_SORT_KEY,
    Switch,
    decode_timestamp,
    encode_timestamp,
    latest_key,
    log_key,
)

T0 = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


class TestTimestampEncoding:
    """Tests for the sortable timestamp format."""

    def test_fixed_width_utc(self):
        assert encode_timestamp(T0) == "2024-05-01T12:00:00.123456Z"
        assert encode_timestamp(T0.replace(microsecond=0)) == "2024-05-01T12:00:00.000000Z"

    def test_other_zones_converted_to_utc(self):
        cest = timezone(timedelta(hours=2))
        assert encode_timestamp(datetime(2024, 5, 1, 14, 0, tzinfo=cest)) == (
            "2024-05-01T12:00:00.000000Z"
        )

    def test_naive_is_utc(self):
        assert encode_timestamp(datetime(2024, 5, 1, 12, 0)) == "2024-05-01T12:00:00.000000Z"

    def test_string_order_is_time_order(self):
        times = [
            T0,
            T0 + timedelta(microseconds=1),
            T0 + timedelta(seconds=1),
            T0 + timedelta(days=400),
            T0 - timedelta(microseconds=999999),
        ]
        encoded = [encode_timestamp(t) for t in times]

        assert sorted(encoded) == [encode_timestamp(t) for t in sorted(times)]

    def test_early_years_zero_padded(self):
        early = datetime(999, 1, 1, tzinfo=timezone.utc)

        encoded = encode_timestamp(early)

        assert encoded == "0999-01-01T00:00:00.000000Z"
        assert len(encoded) == 27
        assert encoded < encode_timestamp(T0)
        assert decode_timestamp(encoded) == early

    def test_decode(self):
        assert decode_timestamp("2024-05-01T12:00:00.123456Z") == T0

    def test_decode_rejects_other_formats(self):
        with pytest.raises(ValueError):
            decode_timestamp("2024-05-01T12:00:00Z")


class TestSwitch:
    """Tests for Switch and its items."""

    def test_latest_item(self):
        item = Switch("123", True, T0).as_latest_item()

        assert item == {
            "pk": "123",
            "sk": LATEST_SORT_KEY,
            "state": True,
            "created_at": "2024-05-01T12:00:00.123456Z",
        }

    def test_log_item(self):
        item = Switch("123", False, T0).as_log_item()

        assert item["pk"] == "123"
        assert item["sk"] == "SWITCH#2024-05-01T12:00:00.123456Z"
        assert item["state"] is False

    def test_keys(self):
        assert str(latest_key("123")) == "123/LATEST_SWITCH"
        assert log_key("123", T0).sort == "SWITCH#2024-05-01T12:00:00.123456Z"

    def test_from_item(self):
        switch = Switch.from_item(Switch("123", True, T0).as_log_item())

        assert switch == Switch("123", True, T0)

    def test_created_at_normalized(self):
        local = T0.astimezone(timezone(timedelta(hours=-5)))

        switch = Switch("123", True, local)

        assert switch.created_at == T0
        assert switch.created_at.tzinfo == timezone.utc

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            Switch("", True, T0)

    @pytest.mark.parametrize(
        "item",
        [
            {"pk": "1", "sk": "LATEST_SWITCH", "state": True},
            {"pk": "1", "sk": "LATEST_SWITCH", "created_at": "2024-05-01T12:00:00.000000Z"},
            {"pk": "1", "state": "yes", "created_at": "2024-05-01T12:00:00.000000Z"},
            {"pk": "1", "state": True, "created_at": "yesterday"},
        ],
    )
    def test_from_item_rejects_malformed(self, item):
        with pytest.raises(ValueError):
            Switch.from_item(item)

    def test_to_dict(self):
        assert Switch("123", True, T0).to_dict() == {
            "id": "123",
            "state": True,
            "created_at": "2024-05-01T12:00:00.123456Z",
        }
