"""Canonical encoding of audit entries used as hash input.

The encoding is a compact JSON object whose top-level keys appear in a fixed
order, independent of how the caller built the entry:

    id, timestamp, actorId, actorType, [serviceId], action, resourceType,
    [resourceId], [beforeState], [afterState], [previousChecksum]

Bracketed keys are omitted entirely when the field is absent (None). A field
that is present but empty ("" or {}) is kept, so absence and emptiness
produce different digests. Changing any of these rules changes every digest
and breaks verification of chains that are already stored.

Numbers inside state snapshots are written as ECMAScript ``Number::toString``
writes them, since the chains this code verifies are also produced by
``JSON.stringify``: ``2.0`` becomes ``2``, ``1e-07`` becomes ``1e-7`` and
``1e21`` becomes ``1e+21``. Integers of 1e21 and above are written the same
way, so they only hash alike when they are exactly representable as doubles.
"""

import json
import logging
import math
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import ValidationError

from auditchain.audit.models import AuditEntry, as_utc
from auditchain.exceptions import MalformedEntryError

logger = logging.getLogger(__name__)

# Decimal exponent at which JavaScript switches to exponent notation
JS_EXPONENT_THRESHOLD = 21


def normalize_timestamp(value: datetime | str) -> str:
    """Render an instant as UTC ISO-8601 with millisecond precision.

    Naive datetimes are taken to be UTC. ``2024-01-15T19:30:00+09:00`` and
    ``datetime(2024, 1, 15, 10, 30, tzinfo=UTC)`` both become
    ``2024-01-15T10:30:00.000Z``.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as e:
            raise MalformedEntryError(f"Invalid ISO-8601 timestamp: {value!r}") from e
    if not isinstance(value, datetime):
        raise MalformedEntryError(f"Unsupported timestamp type: {type(value).__name__}")

    dt = as_utc(value)
    return f"{dt:%Y-%m-%dT%H:%M:%S}.{dt.microsecond // 1000:03d}Z"


def sort_keys_deep(value: Any) -> Any:
    """Recursively sort mapping keys. List order is preserved."""
    if isinstance(value, Mapping):
        return {str(k): sort_keys_deep(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, list | tuple):
        return [sort_keys_deep(v) for v in value]
    if isinstance(value, datetime):
        return normalize_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, bool | int | str):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise MalformedEntryError(f"Non-finite number in state snapshot: {value}")
        return value
    return str(value)


def format_number(value: int | float) -> str:
    """Render a number the way JavaScript's ``JSON.stringify`` does."""
    if isinstance(value, int) and abs(value) < 10**JS_EXPONENT_THRESHOLD:
        return str(value)
    try:
        value = float(value)
    except OverflowError as e:
        raise MalformedEntryError(f"Integer too large for a JSON number: {value}") from e
    if not math.isfinite(value):
        raise MalformedEntryError(f"Non-finite number in state snapshot: {value}")
    if value == 0:
        return "0"

    # repr gives the shortest digit string that round-trips, as JS does
    sign, digit_tuple, exponent = Decimal(repr(value)).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    k = len(digits)
    n = exponent + k
    prefix = "-" if sign else ""

    if k <= n <= JS_EXPONENT_THRESHOLD:
        return prefix + digits + "0" * (n - k)
    if 0 < n <= JS_EXPONENT_THRESHOLD:
        return prefix + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return prefix + "0." + "0" * -n + digits

    mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
    return f"{prefix}{mantissa}e{n - 1:+d}"


def encode_canonical(value: Any) -> str:
    """Compact JSON for an already canonicalized value. Key order is kept as given."""
    if isinstance(value, dict):
        items = (f"{encode_canonical(k)}:{encode_canonical(v)}" for k, v in value.items())
        return "{" + ",".join(items) + "}"
    if isinstance(value, list):
        return "[" + ",".join(encode_canonical(v) for v in value) + "]"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if value is None or isinstance(value, bool):
        return json.dumps(value)
    if isinstance(value, int | float):
        return format_number(value)
    raise MalformedEntryError(f"Cannot encode {type(value).__name__} in canonical form")


class CanonicalForm:
    """Ordered builder for the canonical field set.

    ``required`` rejects missing or empty values; ``optional`` leaves the key
    out only when the value is None.
    """

    def __init__(self) -> None:
        self._fields: dict[str, Any] = {}

    def required(self, key: str, value: Any) -> "CanonicalForm":
        if value is None or value == "":
            raise MalformedEntryError(f"Audit entry is missing required field '{key}'")
        self._fields[key] = value
        return self

    def optional(self, key: str, value: Any) -> "CanonicalForm":
        if value is not None:
            self._fields[key] = value
        return self

    def build(self) -> dict[str, Any]:
        return dict(self._fields)


def coerce_entry(entry: AuditEntry | Mapping[str, Any]) -> AuditEntry:
    """Accept an AuditEntry or a mapping with snake_case or camelCase keys."""
    if isinstance(entry, AuditEntry):
        return entry
    if not isinstance(entry, Mapping):
        raise MalformedEntryError(f"Expected an audit entry, got {type(entry).__name__}")
    try:
        return AuditEntry.model_validate(entry)
    except ValidationError as e:
        entry_id = entry.get("id", "<unknown>")
        logger.error("Malformed audit entry %s: %d validation error(s)", entry_id, e.error_count())
        raise MalformedEntryError(f"Malformed audit entry {entry_id}: {e}") from e


def canonical_fields(entry: AuditEntry | Mapping[str, Any]) -> dict[str, Any]:
    """Return the ordered field mapping that gets hashed."""
    entry = coerce_entry(entry)
    before = sort_keys_deep(entry.before_state) if entry.before_state is not None else None
    after = sort_keys_deep(entry.after_state) if entry.after_state is not None else None

    return (
        CanonicalForm()
        .required("id", entry.id)
        .required("timestamp", normalize_timestamp(entry.timestamp))
        .required("actorId", entry.actor_id)
        .required("actorType", entry.actor_type)
        .optional("serviceId", entry.service_id)
        .required("action", entry.action)
        .required("resourceType", entry.resource_type)
        .optional("resourceId", entry.resource_id)
        .optional("beforeState", before)
        .optional("afterState", after)
        .optional("previousChecksum", entry.previous_checksum)
        .build()
    )


def canonical_bytes(entry: AuditEntry | Mapping[str, Any]) -> bytes:
    """Serialize the canonical field mapping to compact UTF-8 JSON."""
    return encode_canonical(canonical_fields(entry)).encode("utf-8")
