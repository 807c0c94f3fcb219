"""Audit log hash chain verification."""

import logging
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from auditchain.audit.canonical import coerce_entry
from auditchain.audit.checksum import ChecksumCalculator, digest_prefix, secure_compare
from auditchain.audit.models import (
    MAX_INVALID_DETAILS,
    AuditEntry,
    ChainIntegrityResult,
    ChainVerificationOptions,
    ChecksumVerificationResult,
    DateRange,
    FailureKind,
)
from auditchain.exceptions import ChainContractError, WindowLimitExceededError

logger = logging.getLogger(__name__)

MISSING_CHECKSUM_REASON = "missing stored checksum"
CHAIN_BREAK_REASON = "chain break: link does not match predecessor"


class ChainVerifier:
    """Verify a window of audit entries against their stored checksums.

    Checks, per entry:
    1. A stored checksum exists
    2. The stored checksum matches the entry's current content
    3. The entry's previous_checksum links to its predecessor

    Integrity findings are returned in the result, never raised. Only
    caller mistakes (oversized window, entries outside the requested scope,
    malformed entries) raise.
    """

    def __init__(
        self,
        calculator: ChecksumCalculator | None = None,
        *,
        workers: int = 1,
        chunk_size: int = 1_000,
        max_invalid_details: int = MAX_INVALID_DETAILS,
    ) -> None:
        if workers < 1 or chunk_size < 1 or max_invalid_details < 1:
            raise ValueError("workers, chunk_size and max_invalid_details must be positive")
        self.calculator = calculator or ChecksumCalculator()
        self.workers = workers
        self.chunk_size = chunk_size
        self.max_invalid_details = max_invalid_details

    def verify_chain(
        self,
        entries: Sequence[AuditEntry | Mapping[str, Any]],
        stored_checksums: Mapping[str, str],
        options: ChainVerificationOptions | None = None,
        *,
        predecessor_checksum: str | None = None,
    ) -> ChainIntegrityResult:
        """Verify ``entries`` (ascending chronological order) against ``stored_checksums``.

        ``predecessor_checksum`` is the stored checksum of the entry just
        before the window. When given, the first entry's link is checked
        against it. When omitted and the first entry references a
        predecessor, the window is only checked for internal consistency
        and the result has ``anchored=False``.
        """
        options = options or ChainVerificationOptions()
        window = [coerce_entry(e) for e in entries]
        self._check_contract(window, options, predecessor_checksum)

        # An actor/service-filtered window skips entries, so neighbours in
        # the window are not neighbours in the chain.
        check_links = not options.has_filters
        stop = threading.Event() if options.stop_on_first_invalid else None

        if self.workers > 1 and len(window) > self.chunk_size:
            findings, checked = self._verify_parallel(
                window, stored_checksums, check_links, predecessor_checksum, stop
            )
        else:
            findings, checked = self._verify_range(
                window, stored_checksums, 0, len(window), check_links, predecessor_checksum, stop
            )

        result = self._summarize(
            window, options, findings, checked, check_links, predecessor_checksum
        )
        if result.valid:
            logger.info("Chain verified: %d entries intact", result.checked_entries)
        else:
            logger.warning(
                "Chain verification found %d invalid of %d checked entries (first: %s)",
                result.invalid_entries,
                result.checked_entries,
                result.first_invalid_entry.entry_id if result.first_invalid_entry else None,
            )
        return result

    def _check_contract(
        self,
        window: list[AuditEntry],
        options: ChainVerificationOptions,
        predecessor_checksum: str | None,
    ) -> None:
        if len(window) > options.limit:
            raise WindowLimitExceededError(len(window), options.limit)
        if predecessor_checksum is not None and options.has_filters:
            raise ChainContractError(
                "predecessor_checksum cannot be combined with actor or service filters"
            )
        for i, entry in enumerate(window):
            if not options.includes(entry):
                raise ChainContractError(
                    f"Entry {i + 1} ({entry.id}) is outside the requested verification window"
                )

    def _verify_parallel(
        self,
        window: list[AuditEntry],
        stored_checksums: Mapping[str, str],
        check_links: bool,
        predecessor_checksum: str | None,
        stop: threading.Event | None,
    ) -> tuple[list[ChecksumVerificationResult], int]:
        bounds = [
            (start, min(start + self.chunk_size, len(window)))
            for start in range(0, len(window), self.chunk_size)
        ]
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [
                pool.submit(
                    self._verify_range,
                    window,
                    stored_checksums,
                    start,
                    end,
                    check_links,
                    predecessor_checksum,
                    stop,
                )
                for start, end in bounds
            ]
            # Merge in index order, not completion order
            parts = [f.result() for f in futures]

        findings: list[ChecksumVerificationResult] = []
        checked = 0
        for part_findings, part_checked in parts:
            findings.extend(part_findings)
            checked += part_checked
        return findings, checked

    def _verify_range(
        self,
        window: list[AuditEntry],
        stored_checksums: Mapping[str, str],
        start: int,
        end: int,
        check_links: bool,
        predecessor_checksum: str | None,
        stop: threading.Event | None,
    ) -> tuple[list[ChecksumVerificationResult], int]:
        findings: list[ChecksumVerificationResult] = []
        checked = 0
        prev_actual: str | None = None
        if check_links and start > 0:
            prev_actual = self.calculator.calculate(window[start - 1])

        for i in range(start, end):
            if stop is not None and stop.is_set():
                break

            entry = window[i]
            actual = self.calculator.calculate(entry)
            finding = self._check_entry(
                window, stored_checksums, i, actual, prev_actual, check_links, predecessor_checksum
            )
            checked += 1
            prev_actual = actual

            if finding is not None:
                logger.warning(
                    "Integrity finding at entry %d (%s): %s", i + 1, entry.id, finding.reason
                )
                findings.append(finding)
                if stop is not None:
                    stop.set()
                    break

        return findings, checked

    def _check_entry(
        self,
        window: list[AuditEntry],
        stored_checksums: Mapping[str, str],
        i: int,
        actual: str,
        prev_actual: str | None,
        check_links: bool,
        predecessor_checksum: str | None,
    ) -> ChecksumVerificationResult | None:
        entry = window[i]
        stored = stored_checksums.get(entry.id)
        previous_entry_id = window[i - 1].id if i > 0 else None

        if stored is None:
            return ChecksumVerificationResult(
                entry_id=entry.id,
                index=i,
                valid=False,
                actual_checksum=actual,
                previous_entry_id=previous_entry_id,
                failures=[FailureKind.MISSING_CHECKSUM],
                reason=MISSING_CHECKSUM_REASON,
            )

        failures: list[FailureKind] = []
        reasons: list[str] = []

        if not secure_compare(actual, stored):
            failures.append(FailureKind.CHECKSUM_MISMATCH)
            reasons.append(
                f"checksum mismatch: stored {digest_prefix(stored)}, "
                f"computed {digest_prefix(actual)}"
            )

        if check_links:
            link_error = self._check_link(
                window, stored_checksums, i, prev_actual, predecessor_checksum
            )
            if link_error is not None:
                failures.append(FailureKind.CHAIN_BREAK)
                reasons.append(link_error)

        if not failures:
            return None

        return ChecksumVerificationResult(
            entry_id=entry.id,
            index=i,
            valid=False,
            expected_checksum=stored,
            actual_checksum=actual,
            previous_entry_id=previous_entry_id,
            failures=failures,
            reason="; ".join(reasons),
        )

    def _check_link(
        self,
        window: list[AuditEntry],
        stored_checksums: Mapping[str, str],
        i: int,
        prev_actual: str | None,
        predecessor_checksum: str | None,
    ) -> str | None:
        """Return a chain-break reason, or None if the link holds."""
        link = window[i].previous_checksum

        if i == 0:
            if predecessor_checksum is None:
                return None
            if link is None or not secure_compare(link, predecessor_checksum):
                return CHAIN_BREAK_REASON
            return None

        prev_stored = stored_checksums.get(window[i - 1].id)
        expected = prev_stored if prev_stored is not None else prev_actual

        if link is None or expected is None or not secure_compare(link, expected):
            return CHAIN_BREAK_REASON
        if prev_stored is not None and prev_actual is not None:
            if not secure_compare(prev_stored, prev_actual):
                return f"{CHAIN_BREAK_REASON} (predecessor content no longer matches its checksum)"
        return None

    def _summarize(
        self,
        window: list[AuditEntry],
        options: ChainVerificationOptions,
        findings: list[ChecksumVerificationResult],
        checked: int,
        check_links: bool,
        predecessor_checksum: str | None,
    ) -> ChainIntegrityResult:
        invalid = len(findings)
        anchored = check_links and (
            predecessor_checksum is not None or not window or window[0].previous_checksum is None
        )
        date_range = DateRange(
            start=options.start_date or (window[0].timestamp if window else None),
            end=options.end_date or (window[-1].timestamp if window else None),
        )
        return ChainIntegrityResult(
            valid=invalid == 0,
            total_entries=len(window),
            checked_entries=checked,
            valid_entries=checked - invalid,
            invalid_entries=invalid,
            first_invalid_entry=findings[0] if findings else None,
            invalid_entry_details=findings[: self.max_invalid_details],
            details_truncated=invalid > self.max_invalid_details,
            anchored=anchored,
            date_range=date_range,
        )


def verify_chain(
    entries: Sequence[AuditEntry | Mapping[str, Any]],
    stored_checksums: Mapping[str, str],
    options: ChainVerificationOptions | None = None,
    *,
    predecessor_checksum: str | None = None,
) -> ChainIntegrityResult:
    """Verify a window with a default, single-threaded verifier."""
    return ChainVerifier().verify_chain(
        entries, stored_checksums, options, predecessor_checksum=predecessor_checksum
    )
