"""CLI entrypoint for auditchain."""

import auditchain.cli.audit_cmd  # noqa: F401
from auditchain.cli.main import cli


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
