"""
Unit tests for the CLI main module.

Tests cover the runner wiring and the CLI commands: plan, deploy, config,
logs and version. Every run uses the dry-run engine.
"""

import json
import logging

import click
import pytest
from click.testing import CliRunner

from peerstack.cli.main import (
    PeerstackRunner,
    StructuredFormatter,
    cli,
    hostname_hint,
)
from peerstack.config.settings import DeploymentConfig, reload_settings
from peerstack.executors.base import (
    DeploymentResult,
    ParallelOrchestrator,
    UnitExecution,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """The CLI group reconfigures the root logger on every invocation."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def configured_env(monkeypatch):
    monkeypatch.setenv("CDK_DEFAULT_ACCOUNT", "123456789012")
    monkeypatch.setenv("CDK_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("SECONDARY_AWS_REGION", "us-west-2")
    monkeypatch.setenv("APP_HOSTNAME", "beats.example.com")
    return reload_settings()


@pytest.fixture
def runner():
    return CliRunner()


class TestPeerstackRunner:
    """Test how a command is wired together."""

    def test_config_read_from_settings(self, configured_env):
        """Test the deployment config comes from the environment."""
        peerstack = PeerstackRunner(dry_run=True, show_progress=False)

        assert peerstack.config.primary_region == "us-east-1"
        assert peerstack.config.secondary_region == "us-west-2"
        assert peerstack.executor_config.dry_run

    def test_strategy_override(self, configured_env):
        """Test the strategy option wins over settings."""
        peerstack = PeerstackRunner(dry_run=True, strategy="parallel", show_progress=False)

        _, orchestrator, _ = peerstack.build()

        assert isinstance(orchestrator, ParallelOrchestrator)

    def test_templates_required_for_real_runs(self, configured_env):
        """Test a real deploy needs a templates directory."""
        with pytest.raises(click.UsageError, match="templates-dir"):
            PeerstackRunner(show_progress=False).build()

    @pytest.mark.asyncio
    async def test_dry_run_deploy(self, configured_env):
        """Test the wired dry run deploys every unit."""
        result = await PeerstackRunner(dry_run=True, show_progress=False).deploy()

        assert result.success
        assert len(result.applied_units()) == 9


class TestHostnameHint:
    """Test the hostname follow-up."""

    def _result(self, hostname):
        return DeploymentResult(
            success=True,
            execution_id="deploy_x",
            units={
                "routing": UnitExecution(
                    unit_id="routing",
                    region="us-east-1",
                    status="applied",
                    outputs={"accelerator_dns_name": hostname},
                )
            },
        )

    def test_hint_when_hostname_unset(self):
        """Test the operator is told which hostname to export."""
        hint = hostname_hint(self._result("a1.awsglobalaccelerator.com"), DeploymentConfig())

        assert hint == "export APP_HOSTNAME=a1.awsglobalaccelerator.com"

    def test_no_hint_when_hostname_set(self):
        """Test nothing is suggested once the hostname is configured."""
        config = DeploymentConfig(app_hostname="beats.example.com")

        assert hostname_hint(self._result("a1.awsglobalaccelerator.com"), config) is None


class TestStructuredFormatter:
    """Test JSON log records."""

    def test_extra_fields_included(self):
        """Test structured extras end up in the JSON record."""
        record = logging.LogRecord(
            "Orchestrator", logging.INFO, __file__, 1, "Applying unit: net", None, None
        )
        record.unit_id = "net"
        record.region = "us-east-1"

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "Applying unit: net"
        assert data["unit_id"] == "net"
        assert data["region"] == "us-east-1"
        assert data["correlation_id"] == "unknown"


class TestCLICommands:
    """Test the click commands."""

    def test_version(self, runner):
        """Test version command."""
        result = runner.invoke(cli, ["version"])

        assert result.exit_code == 0
        assert "Version: 0.1.0" in result.output

    def test_config_masks_secrets_and_warns(self, runner, monkeypatch):
        """Test config shows masked credentials and missing values."""
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "very-secret")
        reload_settings()

        result = runner.invoke(cli, ["config"])

        assert result.exit_code == 0
        assert "very-secret" not in result.output
        assert "***MASKED***" in result.output
        assert "SECONDARY_AWS_REGION" in result.output

    def test_plan(self, runner, configured_env):
        """Test plan prints the apply order and the resolved values."""
        result = runner.invoke(cli, ["plan"])

        assert result.exit_code == 0, result.output
        assert "1. foundation-primary" in result.output
        assert "Resolved values" in result.output
        assert "=> app-secondary.release_cookie_secret_arn" in result.output
        assert "export APP_HOSTNAME" not in result.output

    def test_plan_without_hostname(self, runner, configured_env, monkeypatch):
        """Test plan tells the operator which hostname to export."""
        monkeypatch.delenv("APP_HOSTNAME")
        reload_settings()

        result = runner.invoke(cli, ["plan"])

        assert result.exit_code == 0, result.output
        assert "APP_HOSTNAME not set" in result.output
        assert "export APP_HOSTNAME=a" in result.output

    def test_plan_output_file(self, runner, configured_env, tmp_path):
        """Test plan saves the result as JSON."""
        output = tmp_path / "plan.json"

        result = runner.invoke(cli, ["plan", "--output", str(output)])

        assert result.exit_code == 0, result.output
        data = json.loads(output.read_text())
        assert data["success"] is True
        assert "routing" in data["units"]

    def test_plan_rejects_overlapping_ranges(self, runner, configured_env, monkeypatch):
        """Test structural errors end the command before anything runs."""
        monkeypatch.setenv("SECONDARY_CIDR", "10.0.2.0/22")
        reload_settings()

        result = runner.invoke(cli, ["plan"])

        assert result.exit_code == 1
        assert "overlap" in result.output.lower()

    def test_deploy_dry_run(self, runner, configured_env):
        """Test a dry-run deploy completes."""
        result = runner.invoke(cli, ["deploy", "--dry-run", "--strategy", "parallel"])

        assert result.exit_code == 0, result.output
        assert "Deployment completed successfully" in result.output

    def test_deploy_requires_templates(self, runner, configured_env):
        """Test a real deploy without templates is a usage error."""
        result = runner.invoke(cli, ["deploy"])

        assert result.exit_code == 2
        assert "--templates-dir is required" in result.output

    def test_destroy_requires_confirmation(self, runner, configured_env, tmp_path):
        """Test destroy aborts unless confirmed."""
        result = runner.invoke(cli, ["destroy", "--templates-dir", str(tmp_path)], input="n\n")

        assert result.exit_code == 1
        assert "Aborted" in result.output

    def test_logs_without_events(self, runner):
        """Test logs reports when nothing was recorded yet."""
        result = runner.invoke(cli, ["logs", "--events"])

        assert result.exit_code == 0
        assert "No logs found" in result.output

    def test_logs_after_plan(self, runner, configured_env):
        """Test the event log of a run can be shown."""
        runner.invoke(cli, ["plan"])

        result = runner.invoke(cli, ["logs", "--events", "-n", "3"])

        assert result.exit_code == 0
        assert "last 3 lines" in result.output
        assert "deployment_completed" in result.output
