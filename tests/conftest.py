"""
Pytest configuration and shared fixtures.
"""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from peerstack.config.settings import DeploymentConfig, reload_settings
from peerstack.engine.base import EngineResult, UnitDescription
from peerstack.engine.dry_run import DryRunResourceEngine
from peerstack.graph.models import Region, RegionRole, Unit
from peerstack.tools.base import (
    Tool,
    ToolConfig,
    ToolError,
    ToolNotFoundError,
    ToolSchema,
)
from peerstack.tools.registry import RegionalToolRegistry

PRIMARY = "us-east-1"
SECONDARY = "us-west-2"


class FakeControlPlaneTool(Tool):
    """In-memory stand-in for the AWS control-plane tool."""

    def __init__(self, config: ToolConfig, fail_actions: Optional[Dict[str, str]] = None):
        super().__init__(config)
        self.fail_actions = fail_actions if fail_actions is not None else {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.secrets: Dict[str, str] = {}
        self.vpcs: Dict[str, str] = {}

    async def _build_schema(self) -> ToolSchema:
        return ToolSchema(
            name="fake",
            description="Fake control-plane tool",
            version="1.0.0",
            actions={
                "modify_vpc_peering_connection_options": {"idempotent": True},
                "describe_vpc_by_name": {"idempotent": True},
                "create_secret": {"idempotent": False},
                "describe_secret": {"idempotent": True},
                "delete_secret": {"idempotent": False},
            },
        )

    async def _create_client(self) -> Any:
        return None

    async def _create_validator(self) -> Any:
        return None

    async def _execute_action(self, action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((action, params))
        if action in self.fail_actions:
            raise ToolError(self.fail_actions[action], code="FakeFailure")

        if action == "create_secret":
            name = params["name"]
            if name in self.secrets:
                return {"arn": self.secrets[name], "name": name, "created": False}
            arn = f"arn:aws:secretsmanager:{self.config.region}:123456789012:secret:{name}-AbCdEf"
            self.secrets[name] = arn
            return {"arn": arn, "name": name, "created": True}
        if action == "describe_secret":
            name = params["secret_id"]
            if name not in self.secrets:
                raise ToolNotFoundError(
                    f"Secret {name} not found", code="ResourceNotFoundException"
                )
            return {"arn": self.secrets[name], "name": name}
        if action == "describe_vpc_by_name":
            if params["name"] not in self.vpcs:
                raise ToolNotFoundError(f"No VPC named {params['name']}", code="NotFound")
            return {"vpc_id": self.vpcs[params["name"]]}
        if action == "delete_secret":
            return {"arn": params["secret_id"], "name": params["secret_id"]}
        return dict(params)

    def calls_for(self, action: str) -> List[Dict[str, Any]]:
        return [params for name, params in self.calls if name == action]


class SelectiveFailureEngine(DryRunResourceEngine):
    """Dry-run engine that rejects chosen units."""

    def __init__(self, fail_units=(), **kwargs):
        super().__init__(**kwargs)
        self.fail_units = set(fail_units)

    async def apply(self, description: UnitDescription) -> EngineResult:
        if description.tags.get("unit") in self.fail_units:
            self.calls.append(("apply", description.unit_id))
            return EngineResult(
                success=False, unit_id=description.unit_id, error="rejected by engine"
            )
        return await super().apply(description)

    def applied_units(self) -> List[str]:
        return [unit_id for op, unit_id in self.calls if op == "apply"]


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from the real environment and home directory."""
    for name in (
        "CDK_DEFAULT_ACCOUNT",
        "CDK_DEFAULT_REGION",
        "AWS_DEFAULT_REGION",
        "SECONDARY_AWS_REGION",
        "APP_HOSTNAME",
        "EXECUTION_STRATEGY",
        "LOG_FILE",
        "LOG_LEVEL",
        "PRIMARY_CIDR",
        "SECONDARY_CIDR",
        "STAGE",
        "APP_NAME",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)
    reload_settings()
    yield
    reload_settings()


@pytest.fixture
def deployment_config() -> DeploymentConfig:
    """Fully configured two-region deployment."""
    return DeploymentConfig(
        account="123456789012",
        primary_region=PRIMARY,
        secondary_region=SECONDARY,
        app_hostname="beats.example.com",
    )


@pytest.fixture
def primary_region() -> Region:
    return Region(name=PRIMARY, role=RegionRole.PRIMARY)


@pytest.fixture
def secondary_region() -> Region:
    return Region(name=SECONDARY, role=RegionRole.SECONDARY)


@pytest.fixture
def make_unit(primary_region):
    """Factory for units with sensible defaults."""

    def _make_unit(unit_id: str, region: Optional[Region] = None, **kwargs) -> Unit:
        kwargs.setdefault("kind", "test")
        return Unit(id=unit_id, region=region or primary_region, **kwargs)

    return _make_unit


@pytest.fixture
def tool_failures() -> Dict[str, Dict[str, str]]:
    """Per-region ``{action: error}`` map read by every fake tool."""
    return {}


@pytest.fixture
def fake_tools() -> Dict[str, FakeControlPlaneTool]:
    return {}


@pytest.fixture
def registry(fake_tools, tool_failures) -> RegionalToolRegistry:
    """Registry handing out fake tools, one per region."""

    def factory(config: ToolConfig) -> FakeControlPlaneTool:
        tool = FakeControlPlaneTool(
            config, fail_actions=tool_failures.setdefault(config.region, {})
        )
        fake_tools[config.region] = tool
        return tool

    return RegionalToolRegistry(
        ToolConfig(name="fake", retry_count=0, retry_delay=0), factory=factory
    )


@pytest.fixture
def failing_engine():
    """Factory for dry-run engines that reject the given unit ids."""

    def _failing_engine(*unit_ids: str) -> SelectiveFailureEngine:
        return SelectiveFailureEngine(fail_units=unit_ids)

    return _failing_engine
