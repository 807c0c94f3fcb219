"""Tests for canonical encoding of audit entries."""

import hashlib
from datetime import UTC, datetime, timedelta, timezone

import pytest

from auditchain.audit.canonical import (
    CanonicalForm,
    canonical_bytes,
    canonical_fields,
    format_number,
    normalize_timestamp,
    sort_keys_deep,
)
from auditchain.audit.checksum import calculate_checksum
from auditchain.audit.models import AuditEntry
from auditchain.exceptions import MalformedEntryError

MINIMAL = {
    "id": "a",
    "timestamp": datetime(2024, 1, 15, 10, 30, tzinfo=UTC),
    "actor_id": "u1",
    "actor_type": "user",
    "action": "create",
    "resource_type": "doc",
}


class TestNormalizeTimestamp:
    def test_aware_datetime(self):
        ts = datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=UTC)
        assert normalize_timestamp(ts) == "2024-01-15T10:30:00.123Z"

    def test_naive_datetime_is_utc(self):
        assert normalize_timestamp(datetime(2024, 1, 15, 10, 30)) == "2024-01-15T10:30:00.000Z"

    def test_offset_converted_to_utc(self):
        ts = datetime(2024, 1, 15, 19, 30, tzinfo=timezone(timedelta(hours=9)))
        assert normalize_timestamp(ts) == "2024-01-15T10:30:00.000Z"

    @pytest.mark.parametrize(
        "text",
        [
            "2024-01-15T10:30:00Z",
            "2024-01-15T10:30:00.000Z",
            "2024-01-15T10:30:00+00:00",
            "2024-01-15T19:30:00+09:00",
            "2024-01-15T10:30:00.000400Z",
        ],
    )
    def test_string_encodings_of_same_instant(self, text: str):
        assert normalize_timestamp(text) == "2024-01-15T10:30:00.000Z"

    def test_invalid_string(self):
        with pytest.raises(MalformedEntryError):
            normalize_timestamp("yesterday")


class TestSortKeysDeep:
    def test_nested_keys_sorted_lists_kept(self):
        value = {"b": 1, "a": {"d": [3, 1, {"z": 0, "y": 1}], "c": None}}
        result = sort_keys_deep(value)
        assert list(result) == ["a", "b"]
        assert list(result["a"]) == ["c", "d"]
        assert result["a"]["d"][:2] == [3, 1]
        assert list(result["a"]["d"][2]) == ["y", "z"]

    def test_nested_datetime_normalized(self):
        ts = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)
        assert sort_keys_deep({"at": ts}) == {"at": "2024-01-15T10:30:00.000Z"}

    def test_non_finite_rejected(self):
        with pytest.raises(MalformedEntryError):
            sort_keys_deep({"x": float("nan")})


class TestFormatNumber:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (0, "0"),
            (-0.0, "0"),
            (2.0, "2"),
            (2.5, "2.5"),
            (-123.456, "-123.456"),
            (0.1 + 0.2, "0.30000000000000004"),
            (0.000001, "0.000001"),
            (1e-7, "1e-7"),
            (-2.5e-8, "-2.5e-8"),
            (1e20, "100000000000000000000"),
            (1e21, "1e+21"),
            (1.5e300, "1.5e+300"),
            (10**21, "1e+21"),
            (12345678901234567890, "12345678901234567890"),
        ],
    )
    def test_matches_javascript(self, value, expected):
        assert format_number(value) == expected

    def test_integral_float_hashes_like_int(self):
        assert canonical_bytes(
            AuditEntry(**MINIMAL, after_state={"n": 2.0})
        ) == canonical_bytes(AuditEntry(**MINIMAL, after_state={"n": 2}))

    @pytest.mark.parametrize("value", [float("inf"), 10**400])
    def test_unrepresentable_rejected(self, value):
        with pytest.raises(MalformedEntryError):
            format_number(value)


class TestCanonicalForm:
    def test_optional_none_is_omitted(self):
        fields = CanonicalForm().required("id", "a").optional("serviceId", None).build()
        assert fields == {"id": "a"}

    def test_optional_empty_is_kept(self):
        fields = CanonicalForm().optional("serviceId", "").optional("afterState", {}).build()
        assert fields == {"serviceId": "", "afterState": {}}

    @pytest.mark.parametrize("value", [None, ""])
    def test_required_missing(self, value):
        with pytest.raises(MalformedEntryError, match="actorId"):
            CanonicalForm().required("actorId", value)


def test_exact_byte_format():
    expected = (
        '{"id":"a","timestamp":"2024-01-15T10:30:00.000Z","actorId":"u1",'
        '"actorType":"user","action":"create","resourceType":"doc"}'
    ).encode()
    entry = AuditEntry(**MINIMAL)
    assert canonical_bytes(entry) == expected
    assert calculate_checksum(entry) == hashlib.sha256(expected).hexdigest()


def test_field_order_is_fixed(sample_entry: AuditEntry):
    assert list(canonical_fields(sample_entry)) == [
        "id",
        "timestamp",
        "actorId",
        "actorType",
        "serviceId",
        "action",
        "resourceType",
        "resourceId",
        "beforeState",
        "afterState",
        "previousChecksum",
    ]


def test_states_serialized_with_sorted_keys():
    entry = AuditEntry(**MINIMAL, after_state={"b": 1, "a": {"d": 2.0, "c": [3, 1]}})
    assert b'"afterState":{"a":{"c":[3,1],"d":2},"b":1}' in canonical_bytes(entry)


def test_non_ascii_kept_as_utf8():
    entry = AuditEntry(**MINIMAL, after_state={"name": "김철수"})
    assert "김철수".encode() in canonical_bytes(entry)


def test_mapping_with_camel_case_keys():
    data = {
        "id": "a",
        "timestamp": "2024-01-15T10:30:00Z",
        "actorId": "u1",
        "actorType": "user",
        "action": "create",
        "resourceType": "doc",
    }
    assert canonical_fields(data) == canonical_fields(AuditEntry(**MINIMAL))


def test_mapping_missing_required_field():
    data = dict(MINIMAL)
    del data["actor_id"]
    with pytest.raises(MalformedEntryError):
        canonical_bytes(data)
