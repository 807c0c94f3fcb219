"""Global config loading from ~/.auditchain/."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from auditchain.exceptions import ConfigError

AUDITCHAIN_DIR = Path.home() / ".auditchain"
CONFIG_PATH = AUDITCHAIN_DIR / "config.yaml"
DEFAULT_AUDIT_LOG = AUDITCHAIN_DIR / "audit.jsonl"


class AuditChainConfig(BaseModel):
    audit_log: Path = Field(default_factory=lambda: DEFAULT_AUDIT_LOG)
    default_limit: int = Field(default=10_000, ge=1)
    max_invalid_details: int = Field(default=100, ge=1)
    workers: int = Field(default=1, ge=1)
    chunk_size: int = Field(default=1_000, ge=1)
    log_level: str = "INFO"
    log_file: Path | None = None


def load_config(config_path: Path | None = None) -> AuditChainConfig:
    """Load config from ~/.auditchain/config.yaml, or return defaults."""
    config_path = config_path or CONFIG_PATH
    if not config_path.exists():
        return AuditChainConfig()

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{config_path}: invalid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: expected a mapping, got {type(data).__name__}")

    try:
        return AuditChainConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"{config_path}: {e}") from e
