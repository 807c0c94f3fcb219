"""auditchain: tamper-evident hash chains for audit logs."""

__version__ = "0.1.0"
