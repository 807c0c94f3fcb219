"""Pydantic models for audit entries and verification results."""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

MAX_INVALID_DETAILS = 100
DEFAULT_WINDOW_LIMIT = 10_000


class ActorType(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SERVICE = "service"
    SYSTEM = "system"


class AuditEntry(BaseModel):
    """A write-once audit record.

    Optional fields left as None are absent from the canonical form; an
    empty string or empty dict is present and hashes differently.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    id: str = Field(min_length=1)
    timestamp: datetime
    actor_id: str = Field(min_length=1)
    actor_type: str = Field(min_length=1)
    service_id: str | None = None
    action: str = Field(min_length=1)
    resource_type: str = Field(min_length=1)
    resource_id: str | None = None
    before_state: dict[str, Any] | None = None
    after_state: dict[str, Any] | None = None
    previous_checksum: str | None = None

    def to_json_line(self) -> str:
        """One JSONL line. Only top-level None fields are dropped; None inside states is kept."""
        data = self.model_dump(mode="json", by_alias=True)
        return json.dumps({k: v for k, v in data.items() if v is not None}, ensure_ascii=False)


class StoredAuditEntry(AuditEntry):
    """An entry as persisted, together with the checksum computed at write time."""

    checksum: str = Field(min_length=1)


class FailureKind(str, Enum):
    MISSING_CHECKSUM = "missing_checksum"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    CHAIN_BREAK = "chain_break"


class ChecksumVerificationResult(BaseModel):
    entry_id: str
    index: int
    valid: bool
    expected_checksum: str | None = None
    actual_checksum: str | None = None
    previous_entry_id: str | None = None
    failures: list[FailureKind] = Field(default_factory=list)
    reason: str | None = None


class DateRange(BaseModel):
    start: datetime | None = None
    end: datetime | None = None


class ChainIntegrityResult(BaseModel):
    valid: bool
    total_entries: int
    checked_entries: int
    valid_entries: int
    invalid_entries: int
    first_invalid_entry: ChecksumVerificationResult | None = None
    invalid_entry_details: list[ChecksumVerificationResult] = Field(default_factory=list)
    details_truncated: bool = False
    anchored: bool = False
    verified_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    date_range: DateRange = Field(default_factory=DateRange)


class ChainVerificationOptions(BaseModel):
    """Scope controls for one verification run."""

    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=DEFAULT_WINDOW_LIMIT, ge=1)
    actor_id: str | None = None
    service_id: str | None = None
    stop_on_first_invalid: bool = False

    @model_validator(mode="after")
    def _check_date_bounds(self) -> "ChainVerificationOptions":
        if self.start_date and self.end_date and as_utc(self.end_date) < as_utc(self.start_date):
            raise ValueError("end_date must not be before start_date")
        return self

    @property
    def has_filters(self) -> bool:
        """True when the window is not a contiguous slice of the chain."""
        return self.actor_id is not None or self.service_id is not None

    def includes(self, entry: AuditEntry) -> bool:
        """Return True if the entry falls inside this window's scope."""
        ts = as_utc(entry.timestamp)
        if self.start_date and ts < as_utc(self.start_date):
            return False
        if self.end_date and ts > as_utc(self.end_date):
            return False
        if self.actor_id is not None and entry.actor_id != self.actor_id:
            return False
        if self.service_id is not None and entry.service_id != self.service_id:
            return False
        return True


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
