"""quikdeploy CLI — Typer-based command-line interface.

Provides the ``quikdeploy`` command with subcommands for running and
resuming deployments, upgrading components in place, inspecting records,
predicting addresses and verifying the audit ledger.

All output uses Rich for formatted terminal display.
"""
