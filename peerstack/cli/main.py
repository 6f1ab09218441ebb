"""
Main CLI interface for peerstack.

This module provides a command-line interface for planning, deploying and
tearing down the two-region peered deployment.
"""

import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
import click

from .. import __version__
from ..config.settings import AppSettings, DeploymentConfig, get_settings
from ..engine.base import ResourceEngine
from ..engine.cloudformation import CloudFormationResourceEngine
from ..engine.dry_run import DryRunResourceEngine
from ..errors import PeerstackError
from ..executors.base import (
    DeploymentResult,
    ExecutionStrategy,
    ExecutorConfig,
    Orchestrator,
    create_orchestrator,
)
from ..graph.builder import DeploymentGraph
from ..logging_utils import LogManager, ProgressTracker
from ..lookup import (
    ControlPlaneLookupBackend,
    EngineLookupBackend,
    SecondaryRegionLookup,
)
from ..tools.base import ToolConfig
from ..tools.registry import RegionalToolRegistry
from ..topology import build_topology
from ..utils.directories import get_secure_app_directory

HOSTNAME_OUTPUT = "accelerator_dns_name"


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured logging with correlation IDs."""

    RESERVED = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "getMessage",
        "stack_info",
        "exc_info",
        "exc_text",
        "taskName",
        "correlation_id",
        "execution_id",
    }

    def format(self, record):
        log_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "unknown"),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        execution_id = getattr(record, "execution_id", None)
        if execution_id:
            log_data["execution_id"] = execution_id

        for key, value in record.__dict__.items():
            if key not in self.RESERVED and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


def log_directory() -> Path:
    return get_secure_app_directory("peerstack", "logs")


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> Path:
    """Send JSON records to the log file and plain lines to the console."""
    log_path = Path(log_file) if log_file else log_directory() / "peerstack.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    structured_handler = logging.FileHandler(log_path)
    structured_handler.setFormatter(StructuredFormatter())

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(structured_handler)
    return log_path


class PeerstackRunner:
    """Wires configuration, topology, engine and orchestrator for one command."""

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        dry_run: bool = False,
        templates_dir: Optional[str] = None,
        strategy: Optional[str] = None,
        show_progress: bool = True,
    ):
        self.settings = settings or get_settings()
        self.config = DeploymentConfig.from_settings(self.settings)
        self.correlation_id = str(uuid.uuid4())
        self.dry_run = dry_run
        self.templates_dir = templates_dir
        self.logger = logging.getLogger(self.__class__.__name__)

        executor_config = ExecutorConfig.from_settings(
            self.settings.execution, dry_run=dry_run
        )
        if strategy:
            executor_config = executor_config.model_copy(
                update={"strategy": ExecutionStrategy(strategy)}
            )
        self.executor_config = executor_config

        self.log_manager = LogManager()
        self.progress = ProgressTracker() if show_progress else None

    def build(self) -> Tuple[DeploymentGraph, Orchestrator, RegionalToolRegistry]:
        graph, naming = build_topology(self.config)

        registry = RegionalToolRegistry(
            ToolConfig(
                name="aws",
                retry_count=self.settings.execution.retry_count,
                retry_delay=self.settings.execution.retry_delay,
            )
        )

        engine: ResourceEngine
        if self.dry_run:
            engine = DryRunResourceEngine(self.config.account)
            backend = EngineLookupBackend(engine)
        else:
            if not self.templates_dir:
                raise click.UsageError("--templates-dir is required unless --dry-run is set")
            engine = CloudFormationResourceEngine(Path(self.templates_dir))
            backend = ControlPlaneLookupBackend(registry)

        orchestrator = create_orchestrator(
            self.config,
            engine,
            self.executor_config,
            registry=registry,
            lookup=SecondaryRegionLookup(naming, backend),
            log_manager=self.log_manager,
            progress=self.progress,
        )
        return graph, orchestrator, registry

    async def deploy(self) -> DeploymentResult:
        graph, orchestrator, registry = self.build()
        try:
            return await orchestrator.deploy(graph)
        finally:
            await registry.cleanup()

    async def destroy(self) -> DeploymentResult:
        graph, orchestrator, registry = self.build()
        try:
            await orchestrator.refresh(graph)
            return await orchestrator.destroy(graph)
        finally:
            await registry.cleanup()

    def plan_order(self) -> List[str]:
        graph, _ = build_topology(self.config)
        return graph.validate()


def hostname_hint(result: DeploymentResult, config: DeploymentConfig) -> Optional[str]:
    """The follow-up the operator must run when the hostname is not yet configured."""
    if config.app_hostname:
        return None
    for execution in result.units.values():
        hostname = execution.outputs.get(HOSTNAME_OUTPUT)
        if hostname:
            return f"export APP_HOSTNAME={hostname}"
    return None


def render_result(result: DeploymentResult, config: DeploymentConfig) -> None:
    click.echo()
    if result.trace:
        click.echo("🔗 Resolved values:")
        for entry in result.trace:
            click.echo(f"   {entry}")
        click.echo()

    click.echo("📦 Units:")
    for unit_id, execution in result.units.items():
        line = f"   {unit_id} [{execution.region}] {execution.status}"
        if execution.error:
            line += f": {execution.error}"
        click.echo(line)

    for warning in result.warnings:
        click.echo(f"⚠️  {warning}")

    hint = hostname_hint(result, config)
    if hint:
        click.echo()
        click.echo("👉 Set the application hostname and deploy again:")
        click.echo(f"   {hint}")


async def write_output(output: str, data: Dict[str, Any]) -> None:
    async with aiofiles.open(output, "w") as f:
        await f.write(json.dumps(data, indent=2, default=str))
    click.echo(f"📄 Result saved to {output}")


# CLI Commands


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose):
    """peerstack - multi-region peered deployment orchestration"""
    monitoring = get_settings().monitoring
    configure_logging("DEBUG" if verbose else monitoring.log_level, monitoring.log_file)
    ctx.ensure_object(dict)


@cli.command()
@click.option("--output", "-o", type=click.Path(), help="Save result to JSON file")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in ExecutionStrategy]),
    help="Execution strategy",
)
def plan(output, strategy):
    """Validate the topology and show the values a deploy would resolve.

    Nothing is created: the resource engine and the control plane are
    replaced by deterministic stand-ins.
    """

    async def _plan():
        runner = PeerstackRunner(dry_run=True, strategy=strategy)
        try:
            order = runner.plan_order()
            click.echo("📋 Apply order:")
            for index, unit_id in enumerate(order, 1):
                click.echo(f"   {index}. {unit_id}")

            result = await runner.deploy()
        except PeerstackError as e:
            click.echo(f"❌ Error: {e}")
            sys.exit(1)

        render_result(result, runner.config)
        if output:
            await write_output(output, result.model_dump(mode="json"))
        if not result.success:
            click.echo(f"❌ Failed: {result.error}")
            sys.exit(1)

    asyncio.run(_plan())


@cli.command()
@click.option(
    "--templates-dir",
    "-t",
    type=click.Path(exists=True, file_okay=False),
    help="Directory with one CloudFormation template per unit kind",
)
@click.option("--output", "-o", type=click.Path(), help="Save result to JSON file")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in ExecutionStrategy]),
    help="Execution strategy",
)
@click.option("--dry-run", is_flag=True, help="Resolve everything without creating anything")
def deploy(templates_dir, output, strategy, dry_run):
    """Deploy both regions.

    Examples:
      peerstack deploy --templates-dir ./templates
      peerstack deploy --templates-dir ./templates --strategy parallel
    """

    async def _deploy():
        runner = PeerstackRunner(
            dry_run=dry_run, templates_dir=templates_dir, strategy=strategy
        )
        try:
            result = await runner.deploy()
        except PeerstackError as e:
            click.echo(f"❌ Error: {e}")
            sys.exit(1)

        render_result(result, runner.config)
        if output:
            await write_output(output, result.model_dump(mode="json"))

        if result.success:
            click.echo("🎉 Deployment completed successfully!")
            click.echo(f"⏱️  Duration: {result.duration or 0:.1f} seconds")
        else:
            click.echo(f"❌ Failed: {result.error}")
            click.echo("Applied units were kept; fix the cause and run deploy again.")
            sys.exit(1)

    asyncio.run(_deploy())


@cli.command()
@click.option(
    "--templates-dir",
    "-t",
    type=click.Path(exists=True, file_okay=False),
    required=True,
    help="Directory with one CloudFormation template per unit kind",
)
@click.confirmation_option(prompt="Destroy both regions of the deployment?")
def destroy(templates_dir):
    """Tear the deployment down in reverse dependency order."""

    async def _destroy():
        runner = PeerstackRunner(templates_dir=templates_dir)
        try:
            result = await runner.destroy()
        except PeerstackError as e:
            click.echo(f"❌ Error: {e}")
            sys.exit(1)

        render_result(result, runner.config)
        if result.success:
            click.echo("🧹 Deployment destroyed")
        else:
            click.echo(f"❌ Failed: {result.error}")
            sys.exit(1)

    asyncio.run(_destroy())


@cli.command()
def config():
    """Show the effective configuration with secrets masked."""
    settings = get_settings()
    click.echo(json.dumps(settings.get_safe_dict(), indent=2, default=str))

    warnings = DeploymentConfig.from_settings(settings).configuration_warnings()
    for warning in warnings:
        click.echo(f"⚠️  {warning}")


@cli.command()
@click.option("--lines", "-n", default=50, help="Number of log lines to show")
@click.option("--events", is_flag=True, help="Show the deployment event log instead")
def logs(lines, events):
    """Show recent logs."""

    async def _logs():
        configured = get_settings().monitoring.log_file
        if events:
            log_file = log_directory() / "events.jsonl"
        elif configured:
            log_file = Path(configured)
        else:
            log_file = log_directory() / "peerstack.log"

        if not log_file.exists():
            click.echo("📄 No logs found")
            return

        try:
            async with aiofiles.open(log_file, "r") as f:
                content = await f.read()
                log_lines = content.splitlines()

            recent_lines = log_lines[-lines:] if len(log_lines) > lines else log_lines

            click.echo(f"📄 Recent logs (last {len(recent_lines)} lines):")
            click.echo()

            for line in recent_lines:
                click.echo(line)

        except OSError as e:
            click.echo(f"❌ Error reading logs: {e}")

    asyncio.run(_logs())


@cli.command()
def version():
    """Show version information."""
    click.echo("peerstack multi-region deployment orchestrator")
    click.echo(f"Version: {__version__}")


if __name__ == "__main__":
    cli()
