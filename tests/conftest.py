"""Shared fixtures: linked audit chains built in memory."""

from datetime import UTC, datetime, timedelta

import pytest

from auditchain.audit.checksum import ChecksumCalculator
from auditchain.audit.models import AuditEntry
from auditchain.ids import new_entry_id

BASE_TIME = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)


def build_chain(
    n: int, actors: tuple[str, ...] = ("usr_alice",)
) -> tuple[list[AuditEntry], dict[str, str]]:
    """Build n linked entries and the checksums a store would hold for them."""
    calculator = ChecksumCalculator()
    entries: list[AuditEntry] = []
    stored: dict[str, str] = {}
    previous: str | None = None

    for i in range(n):
        ts = BASE_TIME + timedelta(seconds=i)
        entry = AuditEntry(
            id=new_entry_id(now_ms=int(ts.timestamp() * 1000)),
            timestamp=ts,
            actor_id=actors[i % len(actors)],
            actor_type="admin",
            service_id="svc_identity",
            action="update",
            resource_type="account",
            resource_id=f"acc_{i}",
            before_state={"status": "pending", "seq": i},
            after_state={"status": "active", "seq": i},
            previous_checksum=previous,
        )
        previous = calculator.calculate(entry)
        entries.append(entry)
        stored[entry.id] = previous

    return entries, stored


@pytest.fixture
def chain_factory():
    return build_chain


@pytest.fixture
def sample_entry() -> AuditEntry:
    return AuditEntry(
        id="0190f3a2-7c1e-7000-8000-000000000001",
        timestamp=BASE_TIME,
        actor_id="usr_alice",
        actor_type="admin",
        service_id="svc_identity",
        action="update",
        resource_type="account",
        resource_id="acc_42",
        before_state={"email": "old@example.com", "roles": ["viewer"]},
        after_state={"email": "new@example.com", "roles": ["viewer", "editor"]},
        previous_checksum="ab" * 32,
    )
