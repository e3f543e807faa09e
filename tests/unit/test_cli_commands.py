"""Unit tests for the CLI — Typer command registration and basic behavior.

Commands run against a file-backed local target inside a temp working
directory, via typer.testing.CliRunner.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from quikdeploy.cli.app import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def workspace(tmp_path: Path, monkeypatch) -> Path:
    """Run every command from an empty directory with a clean environment."""
    for name in list(os.environ):
        if name.startswith("QUIKDEPLOY_") or name in ("RPC_URL", "PRIVATE_KEY"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("PRIVATE_KEY", "cli-test-key")
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _latest(workspace: Path, *parts: str) -> dict:
    return json.loads(workspace.joinpath("deployments", *parts, "latest.json").read_text())


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("deploy", "upgrade", "status", "predict", "verify-ledger"):
            assert command in result.output

    @pytest.mark.parametrize(
        "command", ["deploy", "upgrade", "status", "predict", "verify-ledger"]
    )
    def test_command_help(self, command: str):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


# ---------------------------------------------------------------------------
# Test: deploy
# ---------------------------------------------------------------------------


class TestDeploy:
    def test_unknown_stage(self):
        result = runner.invoke(app, ["deploy", "--stage", "everything"])
        assert result.exit_code == 1
        assert "Unknown stage" in result.output

    def test_broadcast_deploy(self, workspace: Path):
        result = runner.invoke(app, ["deploy", "--broadcast"])
        assert result.exit_code == 0, result.output
        latest = _latest(workspace)
        assert latest["status"] == "success"
        assert latest["currentStage"] == "complete"
        assert len(latest["proxies"]) == 5
        assert (workspace / "deployments" / "chain.db").exists()

    def test_dry_run_leaves_live_record_alone(self, workspace: Path):
        result = runner.invoke(app, ["deploy"])
        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        assert _latest(workspace, "dry-run")["broadcast"] is False
        assert not (workspace / "deployments" / "latest.json").exists()

    def test_stage_group_then_resume(self, workspace: Path):
        result = runner.invoke(app, ["deploy", "--broadcast", "--stage", "storage"])
        assert result.exit_code == 0, result.output
        assert "Next stage" in result.output
        first = _latest(workspace)
        assert first["status"] == "partial"

        result = runner.invoke(app, ["deploy", "--broadcast"])
        assert result.exit_code == 0, result.output
        final = _latest(workspace)
        assert final["runId"] == first["runId"]
        assert final["storage"] == first["storage"]
        assert final["status"] == "success"

    def test_out_of_order_stage_fails(self, workspace: Path):
        result = runner.invoke(app, ["deploy", "--broadcast", "--stage", "proxies"])
        assert result.exit_code == 1
        assert _latest(workspace)["status"] == "failed"
        assert list((workspace / "deployments" / "logs").glob("error-*.log"))

    def test_production_guard(self, monkeypatch):
        monkeypatch.setenv("QUIKDEPLOY_ENVIRONMENT", "production")
        monkeypatch.delenv("PRIVATE_KEY")
        result = runner.invoke(app, ["deploy", "--broadcast"])
        assert result.exit_code == 1
        assert "Production guard" in result.output
        assert "deployer credential" in result.output

    def test_unsupported_endpoint(self):
        result = runner.invoke(app, ["deploy", "--rpc-url", "https://rpc.example.org"])
        assert result.exit_code == 1
        assert "Cannot open target" in result.output


# ---------------------------------------------------------------------------
# Test: upgrade
# ---------------------------------------------------------------------------


class TestUpgrade:
    def test_upgrade_after_deploy(self, workspace: Path):
        assert runner.invoke(app, ["deploy", "--broadcast"]).exit_code == 0
        before = _latest(workspace)

        result = runner.invoke(app, ["upgrade", "--broadcast", "-v", "v2", "-c", "userLogic"])
        assert result.exit_code == 0, result.output
        after = _latest(workspace)
        assert after["proxies"] == before["proxies"]
        assert after["implementations"]["userLogic"] != before["implementations"]["userLogic"]
        assert after["implementations"]["nodeLogic"] == before["implementations"]["nodeLogic"]
        upgrades = json.loads((workspace / "deployments" / "upgrades.json").read_text())
        assert len(upgrades) == 1

    def test_dry_run_upgrade_is_isolated(self, workspace: Path):
        assert runner.invoke(app, ["deploy", "--broadcast"]).exit_code == 0
        before = _latest(workspace)

        result = runner.invoke(app, ["upgrade", "-v", "v2"])
        assert result.exit_code == 0, result.output
        assert _latest(workspace) == before
        assert (workspace / "deployments" / "dry-run" / "upgrades.json").exists()

    def test_unauthorized_upgrade(self, monkeypatch):
        assert runner.invoke(app, ["deploy", "--broadcast"]).exit_code == 0
        monkeypatch.setenv("PRIVATE_KEY", "not-the-deployer")
        result = runner.invoke(app, ["upgrade", "--broadcast", "-v", "v2"])
        assert result.exit_code == 1
        assert "Not authorized" in result.output

    def test_nothing_to_upgrade(self):
        result = runner.invoke(app, ["upgrade", "--broadcast", "-v", "v2"])
        assert result.exit_code == 1
        assert "Upgrade failed" in result.output

    def test_version_salt_required(self):
        result = runner.invoke(app, ["upgrade"])
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# Test: status, predict, verify-ledger
# ---------------------------------------------------------------------------


class TestStatus:
    def test_nothing_recorded(self):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "No deployment recorded" in result.output

    def test_after_deploy_with_check(self):
        assert runner.invoke(app, ["deploy", "--broadcast"]).exit_code == 0
        result = runner.invoke(app, ["status", "--check"])
        assert result.exit_code == 0, result.output
        assert "History" in result.output
        assert "Connectivity" in result.output

    def test_check_against_empty_target(self, workspace: Path):
        assert runner.invoke(app, ["deploy", "--broadcast"]).exit_code == 0
        result = runner.invoke(app, ["status", "--check", "--rpc-url", "memory://"])
        assert result.exit_code == 1
        assert "Connectivity check failed" in result.output


class TestPredict:
    def test_predicts_layout(self):
        result = runner.invoke(app, ["predict", "--version-tag", "v2"])
        assert result.exit_code == 0, result.output
        assert "storage" in result.output
        assert "implementations" in result.output

    def test_rejects_bad_deployer(self):
        result = runner.invoke(app, ["predict", "--deployer", "alice"])
        assert result.exit_code == 1
        assert "Not an address" in result.output

    def test_touches_nothing(self, workspace: Path):
        runner.invoke(app, ["predict"])
        assert not (workspace / "deployments").exists()


class TestVerifyLedger:
    def test_missing_ledger(self):
        result = runner.invoke(app, ["verify-ledger"])
        assert result.exit_code == 1

    def test_valid_after_deploy(self):
        assert runner.invoke(app, ["deploy", "--broadcast"]).exit_code == 0
        result = runner.invoke(app, ["verify-ledger"])
        assert result.exit_code == 0, result.output
        assert "VALID" in result.output

    def test_unknown_run(self):
        assert runner.invoke(app, ["deploy", "--broadcast"]).exit_code == 0
        result = runner.invoke(app, ["verify-ledger", "qd-nope"])
        assert result.exit_code == 1
