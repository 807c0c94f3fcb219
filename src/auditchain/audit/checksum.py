"""SHA-256 checksums over canonical audit entries."""

import hashlib
from collections.abc import Mapping
from typing import Any

from cryptography.hazmat.primitives import constant_time

from auditchain.audit.canonical import canonical_bytes
from auditchain.audit.models import AuditEntry

DIGEST_HEX_LENGTH = 64
DIGEST_PREFIX_LENGTH = 8


def secure_compare(a: str, b: str) -> bool:
    """Compare two digests in time independent of where they first differ.

    Length is not secret, so unequal lengths return False straight away.
    """
    if len(a) != len(b):
        return False
    return constant_time.bytes_eq(a.encode("utf-8"), b.encode("utf-8"))


def digest_prefix(digest: str | None) -> str:
    """Short form of a digest for log and diagnostic text."""
    if not digest:
        return "<none>"
    return digest[:DIGEST_PREFIX_LENGTH] + "..."


class ChecksumCalculator:
    """Stateless checksum calculator.

    Safe to share between threads, and cheap enough to build per call site.
    """

    def calculate(self, entry: AuditEntry | Mapping[str, Any]) -> str:
        """Return the lowercase hex SHA-256 of the entry's canonical form."""
        return hashlib.sha256(canonical_bytes(entry)).hexdigest()

    def verify(self, entry: AuditEntry | Mapping[str, Any], expected: str) -> bool:
        """Recompute the entry's checksum and compare it to ``expected``."""
        return secure_compare(self.calculate(entry), expected)


def calculate_checksum(entry: AuditEntry | Mapping[str, Any]) -> str:
    return ChecksumCalculator().calculate(entry)


def verify_checksum(entry: AuditEntry | Mapping[str, Any], expected: str) -> bool:
    return ChecksumCalculator().verify(entry, expected)
