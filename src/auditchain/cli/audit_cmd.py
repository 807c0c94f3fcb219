"""auditchain audit: audit trail commands."""

import json
from datetime import datetime
from pathlib import Path

import click
from pydantic import ValidationError

from auditchain.audit.models import ActorType
from auditchain.cli.main import cli
from auditchain.config import AuditChainConfig
from auditchain.exceptions import AuditChainError

LOG_OPTION_HELP = "Audit log path (default: from config)"


def _log_path(config: AuditChainConfig, log: Path | None) -> Path:
    return log or config.audit_log


def _parse_state(raw: str | None, name: str) -> dict | None:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint=name) from e
    if not isinstance(value, dict):
        raise click.BadParameter("must be a JSON object", param_hint=name)
    return value


@cli.group()
def audit() -> None:
    """Audit trail commands."""


@audit.command()
@click.option("--log", type=click.Path(dir_okay=False, path_type=Path), help=LOG_OPTION_HELP)
@click.option("--start", type=click.DateTime(), default=None, help="Window start (inclusive)")
@click.option("--end", type=click.DateTime(), default=None, help="Window end (inclusive)")
@click.option("--actor", default=None, help="Only entries by this actor")
@click.option("--service", default=None, help="Only entries from this service")
@click.option("--limit", type=int, default=None, help="Maximum entries (default: from config)")
@click.option("--stop-on-first-invalid", is_flag=True, help="Stop at the first finding")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.pass_obj
def verify(
    config: AuditChainConfig,
    log: Path | None,
    start: datetime | None,
    end: datetime | None,
    actor: str | None,
    service: str | None,
    limit: int | None,
    stop_on_first_invalid: bool,
    as_json: bool,
) -> None:
    """Verify audit log hash chain integrity."""
    from auditchain.audit.logger import AuditLogger
    from auditchain.audit.models import ChainVerificationOptions
    from auditchain.audit.verifier import ChainVerifier

    audit_path = _log_path(config, log)
    if not audit_path.exists():
        click.echo(f"No audit log found at {audit_path}")
        return

    try:
        options = ChainVerificationOptions(
            start_date=start,
            end_date=end,
            actor_id=actor,
            service_id=service,
            limit=limit if limit is not None else config.default_limit,
            stop_on_first_invalid=stop_on_first_invalid,
        )
    except ValidationError as e:
        raise click.UsageError(str(e)) from e

    verifier = ChainVerifier(
        workers=config.workers,
        chunk_size=config.chunk_size,
        max_invalid_details=config.max_invalid_details,
    )
    try:
        window = AuditLogger(audit_path).read_window(options)
        result = verifier.verify_chain(
            window.entries,
            window.stored_checksums,
            options,
            predecessor_checksum=window.predecessor_checksum,
        )
    except AuditChainError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    elif result.valid:
        click.echo(f"Audit log verified: {result.checked_entries} entries, chain intact.")
        if not result.anchored:
            click.echo("Note: links into this window from earlier entries were not checked.")
    else:
        first = result.first_invalid_entry
        click.echo(
            f"VERIFICATION FAILED: {result.invalid_entries} of "
            f"{result.checked_entries} entries invalid"
        )
        if first is not None:
            click.echo(f"First invalid: entry {first.index + 1} ({first.entry_id})")
            click.echo(f"Error: {first.reason}")

    if window.truncated and not as_json:
        click.echo(f"Window truncated at {options.limit} entries; narrow the date range.")
    if not result.valid:
        raise SystemExit(1)


@audit.command()
@click.option("--log", type=click.Path(dir_okay=False, path_type=Path), help=LOG_OPTION_HELP)
@click.option("--last", "n", default=20, type=int, help="Number of entries to show")
@click.pass_obj
def show(config: AuditChainConfig, log: Path | None, n: int) -> None:
    """Print recent audit entries."""
    from auditchain.audit.checksum import digest_prefix
    from auditchain.audit.logger import AuditLogger

    audit_path = _log_path(config, log)
    if not audit_path.exists():
        click.echo(f"No audit log found at {audit_path}")
        return

    try:
        entries = AuditLogger(audit_path).read_entries(last_n=n)
    except AuditChainError as e:
        raise click.ClickException(str(e)) from e

    for entry in entries:
        resource = entry.resource_type
        if entry.resource_id:
            resource += f":{entry.resource_id}"
        click.echo(
            f"  {entry.timestamp.isoformat()[:19]}  {entry.actor_id:<12} "
            f"{entry.action:<15} {resource:<24} {digest_prefix(entry.checksum)}"
        )


@audit.command()
@click.option("--log", type=click.Path(dir_okay=False, path_type=Path), help=LOG_OPTION_HELP)
@click.option("--actor", "actor_id", required=True, help="Actor ID")
@click.option(
    "--actor-type",
    default="user",
    type=click.Choice([t.value for t in ActorType]),
    help="Actor type",
)
@click.option("--action", required=True, help="Action performed")
@click.option("--resource-type", required=True, help="Type of the affected resource")
@click.option("--resource-id", default=None, help="ID of the affected resource")
@click.option("--service", "service_id", default=None, help="Originating service")
@click.option("--before", default=None, help="State before the action, as a JSON object")
@click.option("--after", default=None, help="State after the action, as a JSON object")
@click.pass_obj
def append(
    config: AuditChainConfig,
    log: Path | None,
    actor_id: str,
    actor_type: str,
    action: str,
    resource_type: str,
    resource_id: str | None,
    service_id: str | None,
    before: str | None,
    after: str | None,
) -> None:
    """Append one linked entry to the audit log."""
    from auditchain.audit.logger import AuditLogger

    audit_path = _log_path(config, log)
    try:
        entry = AuditLogger(audit_path).log(
            actor_id=actor_id,
            actor_type=actor_type,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            service_id=service_id,
            before_state=_parse_state(before, "--before"),
            after_state=_parse_state(after, "--after"),
        )
    except (AuditChainError, ValidationError) as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"{entry.id} {entry.checksum}")


@audit.command()
@click.argument("source", type=click.File("r", encoding="utf-8"))
def checksum(source) -> None:
    """Print the checksum of an entry given as a JSON document ('-' for stdin)."""
    from auditchain.audit.checksum import calculate_checksum

    try:
        data = json.load(source)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise click.ClickException("expected a JSON object")

    try:
        click.echo(calculate_checksum(data))
    except AuditChainError as e:
        raise click.ClickException(str(e)) from e
