"""Unit tests for change events and watermarks."""

from datetime import date, datetime
from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from cdc_capture.models import ChangeEvent, ConnectionConfig, Dialect, Operation, Watermark


class TestChangeEvent:

    def test_insert_map_has_after_columns_only(self):
        event = ChangeEvent(Operation.INSERT, after_image={"id": 1, "name": "Ann"})

        assert event.to_map() == {"id": 1, "name": "Ann"}

    def test_delete_map_prefixes_before_columns(self):
        event = ChangeEvent(Operation.DELETE, before_image={"id": 1, "name": "Ann"})

        assert event.to_map() == {"before_id": 1, "before_name": "Ann"}

    def test_update_map_has_both_images(self):
        event = ChangeEvent(
            Operation.UPDATE,
            before_image={"id": 1, "name": "Ann"},
            after_image={"id": 1, "name": "Anna"},
        )

        assert event.to_map() == {"before_id": 1, "before_name": "Ann", "id": 1, "name": "Anna"}

    def test_update_without_before_image(self):
        event = ChangeEvent(Operation.UPDATE, after_image={"id": 1})

        assert event.before_image is None
        assert event.to_map() == {"id": 1}

    @pytest.mark.parametrize("operation,before,after", [
        (Operation.INSERT, None, None),
        (Operation.INSERT, {"id": 1}, {"id": 1}),
        (Operation.DELETE, None, None),
        (Operation.DELETE, {"id": 1}, {"id": 1}),
        (Operation.UPDATE, {"id": 1}, None),
    ])
    def test_invalid_images(self, operation, before, after):
        with pytest.raises(ValueError):
            ChangeEvent(operation, before_image=before, after_image=after)

    def test_operation_from_string(self):
        event = ChangeEvent("insert", after_image={"id": 1})

        assert event.operation == Operation.INSERT

    @pytest.mark.parametrize("text", ["INSERT", "Insert", " insert "])
    def test_operation_parse_ignores_case(self, text):
        assert Operation.parse(text) == Operation.INSERT

    def test_operation_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            Operation.parse("upsert")


class TestWatermark:

    def test_initial_value_is_empty(self):
        watermark = Watermark("id")

        assert watermark.last_value is None
        assert watermark.value_type == "none"

    def test_advance_moves_forward_only(self):
        watermark = Watermark("id", 5)

        assert watermark.advance(7) is True
        assert watermark.advance(6) is False
        assert watermark.advance(7) is False
        assert watermark.advance(None) is False
        assert watermark.last_value == 7

    @given(st.lists(st.integers(), min_size=1))
    def test_advance_keeps_maximum(self, values):
        watermark = Watermark("id")
        seen = []
        for value in values:
            watermark.advance(value)
            seen.append(watermark.last_value)

        assert watermark.last_value == max(values)
        assert seen == sorted(seen)

    @pytest.mark.parametrize("value,value_type", [
        (42, "int"),
        (1.5, "float"),
        (Decimal("10.25"), "decimal"),
        (datetime(2024, 3, 1, 12, 30, 5), "datetime"),
        (date(2024, 3, 1), "date"),
        ("abc", "str"),
        (True, "bool"),
        (None, "none"),
    ])
    def test_dict_preserves_value_type(self, value, value_type):
        watermark = Watermark("col", value)
        data = watermark.to_dict()

        assert data["type"] == value_type
        assert Watermark.from_dict(data) == watermark

    def test_bool_value_keeps_its_type(self):
        restored = Watermark.from_dict(Watermark("flag", True).to_dict())

        assert restored.last_value is True
        assert Watermark.from_dict({"column": "flag", "type": "bool", "value": "false"}).last_value is False

    def test_copy_is_independent(self):
        watermark = Watermark("id", 1)
        copied = watermark.copy()
        copied.advance(2)

        assert watermark.last_value == 1


class TestConnectionConfig:

    def test_to_dict_masks_password(self):
        config = ConnectionConfig(Dialect.MYSQL, "localhost", 3306, "db", "db.t", "cdc", "secret")

        assert config.to_dict()["password"] == "***"

    def test_is_immutable(self):
        config = ConnectionConfig(Dialect.MYSQL, "localhost", 3306, "db", "db.t")

        with pytest.raises(AttributeError):
            config.host = "other"
