"""
CloudFormation-backed resource engine.

Each unit is one stack in its own region. The template for a unit is read
from ``<templates_dir>/<kind>.yaml`` (or ``.json``), the unit's resolved
properties become stack parameters, and the stack outputs become the unit's
outputs.
"""

import asyncio
import json
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
import botocore.exceptions

from ..config.settings import get_settings
from ..graph.models import unwrap_value
from .base import EngineResult, ResourceEngine, ResourceEngineError, UnitDescription

NO_UPDATES_MESSAGE = "No updates are to be performed"

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]


class CloudFormationResourceEngine(ResourceEngine):
    """
    Applies units as CloudFormation stacks, one boto3 client per region.

    Stack creation and update block on the CloudFormation waiters, run in
    the default executor so other regions can progress concurrently.
    """

    def __init__(self, templates_dir: Path, waiter_delay: int = 15):
        super().__init__()
        self.templates_dir = Path(templates_dir)
        self.waiter_delay = waiter_delay
        self._clients: Dict[str, Any] = {}

    def _client(self, region: str) -> Any:
        client = self._clients.get(region)
        if client is None:
            cloud = get_settings().cloud
            session_kwargs = {"region_name": region}
            if cloud.aws_access_key_id:
                session_kwargs["aws_access_key_id"] = cloud.aws_access_key_id
            if cloud.aws_secret_access_key:
                session_kwargs["aws_secret_access_key"] = cloud.aws_secret_access_key
            if cloud.aws_session_token:
                session_kwargs["aws_session_token"] = cloud.aws_session_token
            client = boto3.Session(**session_kwargs).client("cloudformation")
            self._clients[region] = client
        return client

    def _template_body(self, kind: str) -> str:
        for suffix in (".yaml", ".yml", ".json"):
            path = self.templates_dir / f"{kind}{suffix}"
            if path.exists():
                return path.read_text()
        raise ResourceEngineError(
            f"No template for unit kind '{kind}' in {self.templates_dir}"
        )

    async def _call(self, func, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def apply(self, description: UnitDescription) -> EngineResult:
        start_time = datetime.utcnow()
        try:
            client = self._client(description.region)
            request = {
                "StackName": description.stack_name,
                "TemplateBody": self._template_body(description.kind),
                "Parameters": _stack_parameters(description.properties),
                "Capabilities": CAPABILITIES,
                "Tags": [
                    {"Key": key, "Value": value}
                    for key, value in description.tags.items()
                ],
            }

            existing = await self._describe_stack(client, description.stack_name)
            changed = True
            if existing is None:
                self.logger.info(
                    f"Creating stack {description.stack_name}",
                    extra={"unit_id": description.unit_id, "region": description.region},
                )
                await self._call(client.create_stack, **request)
                await self._wait(client, "stack_create_complete", description.stack_name)
            else:
                try:
                    await self._call(client.update_stack, **request)
                except botocore.exceptions.ClientError as e:
                    if NO_UPDATES_MESSAGE not in e.response["Error"]["Message"]:
                        raise
                    changed = False
                else:
                    self.logger.info(
                        f"Updating stack {description.stack_name}",
                        extra={
                            "unit_id": description.unit_id,
                            "region": description.region,
                        },
                    )
                    await self._wait(
                        client, "stack_update_complete", description.stack_name
                    )

            stack = await self._describe_stack(client, description.stack_name)
            return EngineResult(
                success=True,
                unit_id=description.unit_id,
                outputs=_stack_outputs(stack or {}),
                changed=changed,
                duration=(datetime.utcnow() - start_time).total_seconds(),
            )

        except (botocore.exceptions.ClientError, botocore.exceptions.WaiterError) as e:
            return self._failure(description, e, start_time)
        except ResourceEngineError as e:
            return self._failure(description, e, start_time)

    async def destroy(self, description: UnitDescription) -> EngineResult:
        try:
            client = self._client(description.region)
            existing = await self._describe_stack(client, description.stack_name)
            if existing is None:
                return EngineResult(
                    success=True, unit_id=description.unit_id, changed=False
                )

            await self._call(client.delete_stack, StackName=description.stack_name)
            await self._wait(client, "stack_delete_complete", description.stack_name)
            return EngineResult(success=True, unit_id=description.unit_id)

        except (botocore.exceptions.ClientError, botocore.exceptions.WaiterError) as e:
            return self._failure(description, e, datetime.utcnow())

    async def describe(self, description: UnitDescription) -> Optional[EngineResult]:
        client = self._client(description.region)
        stack = await self._describe_stack(client, description.stack_name)
        if stack is None or stack.get("StackStatus", "").endswith("_FAILED"):
            return None
        return EngineResult(
            success=True,
            unit_id=description.unit_id,
            outputs=_stack_outputs(stack),
            changed=False,
        )

    async def _describe_stack(self, client: Any, stack_name: str) -> Optional[Dict]:
        try:
            response = await self._call(client.describe_stacks, StackName=stack_name)
        except botocore.exceptions.ClientError as e:
            if "does not exist" in e.response["Error"]["Message"]:
                return None
            raise
        stacks = response.get("Stacks", [])
        return stacks[0] if stacks else None

    async def _wait(self, client: Any, waiter_name: str, stack_name: str) -> None:
        waiter = client.get_waiter(waiter_name)
        await self._call(
            waiter.wait,
            StackName=stack_name,
            WaiterConfig={"Delay": self.waiter_delay, "MaxAttempts": 240},
        )

    def _failure(
        self, description: UnitDescription, error: Exception, start_time: datetime
    ) -> EngineResult:
        self.logger.error(
            "Stack operation failed",
            extra={
                "unit_id": description.unit_id,
                "region": description.region,
                "operation": "engine",
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )
        return EngineResult(
            success=False,
            unit_id=description.unit_id,
            error=str(error),
            duration=(datetime.utcnow() - start_time).total_seconds(),
        )


def _stack_parameters(properties: Dict[str, Any]) -> List[Dict[str, str]]:
    """Turn resolved unit properties into CloudFormation parameters."""
    parameters = []
    for key, value in properties.items():
        value = unwrap_value(value)
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(item) for item in value)
        elif isinstance(value, dict):
            value = json.dumps(value, sort_keys=True)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        parameters.append({"ParameterKey": _pascal_case(key), "ParameterValue": str(value)})
    return parameters


def _stack_outputs(stack: Dict[str, Any]) -> Dict[str, Any]:
    """Read stack outputs back into snake_case output names."""
    return {
        _snake_case(output["OutputKey"]): output.get("OutputValue")
        for output in stack.get("Outputs", [])
    }


def _pascal_case(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in name.split("_"))


def _snake_case(name: str) -> str:
    chars = []
    for index, char in enumerate(name):
        if char.isupper() and index > 0 and not name[index - 1].isupper():
            chars.append("_")
        chars.append(char.lower())
    return "".join(chars)
