"""Main Typer application — imports and registers all CLI commands.

Entry point: ``quikdeploy`` (configured via pyproject.toml scripts).

Commands: deploy, upgrade, status, predict, verify-ledger.
"""

from __future__ import annotations

import typer

from quikdeploy.cli.commands.deploy import deploy_cmd
from quikdeploy.cli.commands.predict import predict_cmd
from quikdeploy.cli.commands.status import status_cmd
from quikdeploy.cli.commands.upgrade import upgrade_cmd
from quikdeploy.cli.commands.verify_ledger import verify_ledger_cmd

app = typer.Typer(
    name="quikdeploy",
    help="quikdeploy: staged, resumable, content-addressed deployment of the QuikDB components.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="deploy", help="Run or resume the staged deployment.")(deploy_cmd)
app.command(name="upgrade", help="Repoint component proxies at new implementations.")(upgrade_cmd)
app.command(name="status", help="Show the latest deployment record.")(status_cmd)
app.command(name="predict", help="Predict component addresses without deploying.")(predict_cmd)
app.command(name="verify-ledger", help="Verify the audit ledger's hash chain.")(verify_ledger_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
