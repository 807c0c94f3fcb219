"""Time-sortable entry identifiers (UUID version 7)."""

import os
import time
import uuid


def new_entry_id(now_ms: int | None = None) -> str:
    """Return a UUIDv7 string.

    The first 48 bits hold the Unix time in milliseconds, so ids generated
    later sort after ids generated earlier.
    """
    ms = int(time.time() * 1000) if now_ms is None else now_ms
    rand = int.from_bytes(os.urandom(10), "big")

    value = (ms & 0xFFFF_FFFF_FFFF) << 80
    value |= 0x7 << 76
    value |= ((rand >> 62) & 0xFFF) << 64
    value |= 0b10 << 62
    value |= rand & 0x3FFF_FFFF_FFFF_FFFF
    return str(uuid.UUID(int=value))


def entry_id_timestamp_ms(entry_id: str) -> int:
    """Extract the millisecond timestamp embedded in a UUIDv7 id."""
    return uuid.UUID(entry_id).int >> 80
