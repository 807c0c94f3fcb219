"""Append-only JSONL audit logger with hash chain."""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from auditchain.audit.checksum import ChecksumCalculator, digest_prefix, secure_compare
from auditchain.audit.models import (
    AuditEntry,
    ChainVerificationOptions,
    StoredAuditEntry,
    as_utc,
)
from auditchain.exceptions import ChainContractError, MalformedEntryError
from auditchain.ids import new_entry_id

logger = logging.getLogger(__name__)


class ChainWindow(BaseModel):
    """Entries and their stored checksums, read from one snapshot of the log."""

    entries: list[StoredAuditEntry] = Field(default_factory=list)
    stored_checksums: dict[str, str] = Field(default_factory=dict)
    predecessor_checksum: str | None = None
    truncated: bool = False


class AuditLogger:
    """Append-only JSONL logger with hash chain.

    Each line is a StoredAuditEntry. Its previous_checksum points to the
    previous line's checksum, forming an integrity-verifiable chain.
    """

    def __init__(self, log_path: Path, calculator: ChecksumCalculator | None = None) -> None:
        self.log_path = log_path
        self.calculator = calculator or ChecksumCalculator()
        self._tail = self._read_tail()

    @property
    def last_checksum(self) -> str | None:
        return self._tail.checksum if self._tail is not None else None

    def log(
        self,
        actor_id: str,
        actor_type: str,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        service_id: str | None = None,
        before_state: dict[str, Any] | None = None,
        after_state: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> StoredAuditEntry:
        """Create, link and append an audit entry to the log."""
        entry = AuditEntry(
            id=new_entry_id(),
            timestamp=timestamp or datetime.now(UTC),
            actor_id=actor_id,
            actor_type=actor_type,
            service_id=service_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
        )
        return self.append(entry)

    def append(self, entry: AuditEntry) -> StoredAuditEntry:
        """Link a caller-built entry to the chain tail and append it.

        An entry that already names a previous_checksum must name the
        current tail. Timestamps may not go backwards: date windows read
        from this log are contiguous slices of the chain only while file
        order and timestamp order agree.
        """
        last_checksum = self.last_checksum
        if entry.previous_checksum is not None and not self._is_tail(entry.previous_checksum):
            raise ChainContractError(
                f"Entry {entry.id} links to {digest_prefix(entry.previous_checksum)} "
                f"but the chain tail is {digest_prefix(last_checksum)}"
            )
        if self._tail is not None and as_utc(entry.timestamp) < as_utc(self._tail.timestamp):
            raise ChainContractError(
                f"Entry {entry.id} at {entry.timestamp.isoformat()} is older than the "
                f"chain tail {self._tail.id} at {self._tail.timestamp.isoformat()}"
            )

        linked = entry.model_copy(update={"previous_checksum": last_checksum})
        # Hash the entry as it will read back from disk
        persisted = AuditEntry.model_validate_json(linked.to_json_line())
        checksum = self.calculator.calculate(persisted)
        stored = StoredAuditEntry(**persisted.model_dump(), checksum=checksum)

        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(stored.to_json_line() + "\n")

        self._tail = stored
        logger.debug("Appended audit entry %s (%s)", stored.id, digest_prefix(checksum))
        return stored

    def read_entries(self, last_n: int | None = None) -> list[StoredAuditEntry]:
        """Read entries from the audit log."""
        entries = list(self._iter_entries())
        if last_n is not None:
            return entries[-last_n:] if last_n > 0 else []
        return entries

    def read_window(self, options: ChainVerificationOptions | None = None) -> ChainWindow:
        """Select the entries a verification run covers, in one pass over the file.

        Entries and checksums come from the same read so they cannot skew.
        For a contiguous (unfiltered) window starting mid-chain, the checksum
        of the entry just before the window is returned for boundary checks.
        """
        options = options or ChainVerificationOptions()
        window = ChainWindow()
        previous: StoredAuditEntry | None = None

        for entry in self._iter_entries():
            if not options.includes(entry):
                if not window.entries:
                    previous = entry
                continue
            if len(window.entries) >= options.limit:
                window.truncated = True
                break
            window.entries.append(entry)
            window.stored_checksums[entry.id] = entry.checksum

        if window.entries and previous is not None and not options.has_filters:
            window.predecessor_checksum = previous.checksum
        return window

    def _is_tail(self, checksum: str) -> bool:
        last_checksum = self.last_checksum
        return last_checksum is not None and secure_compare(checksum, last_checksum)

    def _iter_entries(self):
        if not self.log_path.exists():
            return

        with open(self.log_path, encoding="utf-8") as f:
            for i, line in enumerate(f):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield StoredAuditEntry.model_validate_json(line)
                except ValidationError as e:
                    logger.error("Malformed audit log line %d in %s", i + 1, self.log_path)
                    raise MalformedEntryError(
                        f"{self.log_path} line {i + 1}: failed to parse entry: {e}"
                    ) from e

    def _read_tail(self) -> StoredAuditEntry | None:
        """Read the last entry from the log file, or None if empty."""
        last: StoredAuditEntry | None = None
        for entry in self._iter_entries():
            last = entry
        return last
