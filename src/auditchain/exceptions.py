"""auditchain exception hierarchy.

Integrity findings (missing checksum, checksum mismatch, chain break) are
never raised; they are reported in a ChainIntegrityResult.
"""


class AuditChainError(Exception):
    """Base exception for all auditchain errors."""


class ConfigError(AuditChainError):
    """Raised when the configuration is invalid or cannot be read."""


class MalformedEntryError(AuditChainError):
    """Raised when an audit entry is missing a required field or cannot be parsed."""


class ChainContractError(AuditChainError):
    """Raised when a caller breaks the verification contract."""


class WindowLimitExceededError(ChainContractError):
    """Raised when a verification window holds more entries than its limit allows."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Window holds {size} entries but the limit is {limit}. "
            "Narrow the date range or raise the limit explicitly."
        )
        self.size = size
        self.limit = limit
