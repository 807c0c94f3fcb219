"""Click CLI group for auditchain."""

from pathlib import Path

import click

from auditchain.config import load_config
from auditchain.exceptions import ConfigError
from auditchain.logging_cfg import setup_logging


@click.group()
@click.version_option(package_name="auditchain")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default: ~/.auditchain/config.yaml)",
)
@click.option("--log-level", default=None, help="Log level (default: from config)")
@click.option(
    "--log-file",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write log records to this file (default: from config)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str | None,
    log_file: Path | None,
) -> None:
    """auditchain: tamper-evident hash chains for audit logs."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(log_level or config.log_level, log_file or config.log_file)
    ctx.obj = config
