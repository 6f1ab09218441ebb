"""
AWS control-plane tool for calls the resource engine cannot express.

This module provides a concrete implementation of the Tool interface bound
to a single AWS region. It covers the out-of-band calls the deployment
needs: peering connection options, looking networks up by their stable
name, and the shared secrets that are adopted or created per region.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import boto3
import botocore.exceptions
from botocore.client import BaseClient

from ..config.settings import get_settings
from .base import (
    Tool,
    ToolConfig,
    ToolError,
    ToolNotFoundError,
    ToolSchema,
    ValidationResult,
)

PEERING_SIDES = ("requester_options", "accepter_options")


class AWSControlPlaneTool(Tool):
    """
    AWS control-plane tool for one region.

    Provides functionality for:
    - VPC peering connection options (per side of the link)
    - VPC lookup by Name tag
    - Secrets Manager secrets (create, describe, delete)
    - Caller identity
    """

    def __init__(self, config: Optional[ToolConfig] = None, region: Optional[str] = None):
        if config is None:
            config = ToolConfig(name="aws", region=region)
        elif region is not None:
            config = config.model_copy(update={"region": region})
        super().__init__(config)

        self._region = self.config.region or get_settings().deployment.primary_region
        self._clients: Dict[str, BaseClient] = {}
        self._session: Optional[boto3.Session] = None

    @property
    def region(self) -> Optional[str]:
        return self._region

    async def _build_schema(self) -> ToolSchema:
        """Return the AWS control-plane tool schema."""
        return ToolSchema(
            name="aws",
            description="AWS control-plane tool for out-of-band deployment calls",
            version=self.config.version,
            actions={
                "modify_vpc_peering_connection_options": {
                    "description": "Set one side's options on a VPC peering connection",
                    "idempotent": True,
                    "parameters": {
                        "vpc_peering_connection_id": {"type": "string", "required": True},
                        "requester_options": {"type": "object", "required": False},
                        "accepter_options": {"type": "object", "required": False},
                    },
                },
                "describe_vpc_by_name": {
                    "description": "Find a VPC by its Name tag",
                    "idempotent": True,
                    "parameters": {
                        "name": {"type": "string", "required": True},
                    },
                },
                "create_secret": {
                    "description": "Create a secret with a generated value",
                    "idempotent": False,
                    "parameters": {
                        "name": {"type": "string", "required": True},
                        "description": {"type": "string", "required": False},
                        "password_length": {"type": "integer", "required": False},
                        "exclude_punctuation": {"type": "boolean", "required": False},
                        "include_space": {"type": "boolean", "required": False},
                        "tags": {"type": "object", "required": False},
                    },
                },
                "describe_secret": {
                    "description": "Describe a secret by name or ARN",
                    "idempotent": True,
                    "parameters": {
                        "secret_id": {"type": "string", "required": True},
                    },
                },
                "delete_secret": {
                    "description": "Schedule a secret for deletion",
                    "idempotent": False,
                    "parameters": {
                        "secret_id": {"type": "string", "required": True},
                        "recovery_window_in_days": {"type": "integer", "required": False},
                    },
                },
                "get_account_info": {
                    "description": "Get AWS account information",
                    "idempotent": True,
                    "parameters": {},
                },
            },
            required_permissions=[
                "ec2:ModifyVpcPeeringConnectionOptions",
                "ec2:DescribeVpcs",
                "secretsmanager:CreateSecret",
                "secretsmanager:DescribeSecret",
                "secretsmanager:DeleteSecret",
                "secretsmanager:GetRandomPassword",
            ],
        )

    async def _create_client(self) -> Any:
        """Create AWS session and clients for this tool's region."""
        try:
            settings = get_settings()

            session_kwargs = {"region_name": self._region}

            if settings.cloud.aws_access_key_id:
                session_kwargs["aws_access_key_id"] = settings.cloud.aws_access_key_id
            if settings.cloud.aws_secret_access_key:
                session_kwargs["aws_secret_access_key"] = (
                    settings.cloud.aws_secret_access_key
                )
            if settings.cloud.aws_session_token:
                session_kwargs["aws_session_token"] = settings.cloud.aws_session_token

            self._session = boto3.Session(**session_kwargs)

            self._clients = {
                "ec2": self._session.client("ec2"),
                "secretsmanager": self._session.client("secretsmanager"),
                "sts": self._session.client("sts"),
            }

            identity = self._clients["sts"].get_caller_identity()
            self.logger.info(
                f"AWS connection established for account {identity.get('Account')} "
                f"in region {self._region}"
            )

            return self._session

        except botocore.exceptions.NoCredentialsError:
            raise ToolError(
                "AWS credentials not found. Please configure AWS credentials."
            )
        except botocore.exceptions.PartialCredentialsError:
            raise ToolError(
                "Incomplete AWS credentials. Please check your AWS configuration."
            )
        except Exception as e:
            raise ToolError(f"Failed to initialize AWS session: {e}")

    async def _create_validator(self) -> Any:
        """Create parameter validator for AWS control-plane calls."""

        class AWSValidator:
            def validate(self, action: str, params: Dict[str, Any]) -> ValidationResult:
                errors: List[str] = []
                normalized_params = params.copy()

                if action == "modify_vpc_peering_connection_options":
                    errors.extend(self._validate_peering_options(params))
                elif action == "describe_vpc_by_name":
                    if not params.get("name"):
                        errors.append("name is required")
                elif action == "create_secret":
                    errors.extend(self._validate_secret_params(params))
                elif action in ("describe_secret", "delete_secret"):
                    if not params.get("secret_id"):
                        errors.append("secret_id is required")

                return ValidationResult(
                    valid=len(errors) == 0,
                    errors=errors,
                    normalized_params=normalized_params,
                )

            def _validate_peering_options(self, params: Dict[str, Any]) -> List[str]:
                errors = []
                peering_id = params.get("vpc_peering_connection_id")
                if not peering_id:
                    errors.append("vpc_peering_connection_id is required")
                elif not str(peering_id).startswith("pcx-"):
                    errors.append("Invalid VPC peering connection ID format")

                sides = [side for side in PEERING_SIDES if params.get(side)]
                if not sides:
                    errors.append("One of requester_options or accepter_options is required")
                elif len(sides) > 1:
                    # each side can only be modified from its own region
                    errors.append(
                        "Only one side's options may be set per call; "
                        "requester and accepter options were both given"
                    )
                return errors

            def _validate_secret_params(self, params: Dict[str, Any]) -> List[str]:
                errors = []
                name = params.get("name")
                if not name:
                    errors.append("name is required")
                elif not re.match(r"^[a-zA-Z0-9/_+=.@-]{1,512}$", name):
                    errors.append("Invalid secret name")

                length = params.get("password_length", 32)
                if not isinstance(length, int) or not 8 <= length <= 4096:
                    errors.append("password_length must be between 8 and 4096")
                return errors

        return AWSValidator()

    async def _execute_action(
        self, action: str, params: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Execute AWS action."""
        try:
            if action == "modify_vpc_peering_connection_options":
                return await self._modify_peering_options(params)
            elif action == "describe_vpc_by_name":
                return await self._describe_vpc_by_name(params)
            elif action == "create_secret":
                return await self._create_secret(params)
            elif action == "describe_secret":
                return await self._describe_secret(params)
            elif action == "delete_secret":
                return await self._delete_secret(params)
            elif action == "get_account_info":
                return await self._get_account_info(params)
            else:
                raise ToolError(f"Unknown action: {action}")

        except botocore.exceptions.ClientError as e:
            error_code = e.response["Error"]["Code"]
            error_message = e.response["Error"]["Message"]
            raise ToolError(
                f"AWS API error ({error_code}): {error_message}", code=error_code
            )
        except ToolError:
            raise
        except Exception as e:
            raise ToolError(f"AWS operation failed: {e}")

    # Peering Implementation Methods
    async def _modify_peering_options(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Set DNS resolution options for one side of a peering connection."""
        ec2 = self._clients["ec2"]

        request: Dict[str, Any] = {
            "VpcPeeringConnectionId": params["vpc_peering_connection_id"],
        }
        if params.get("requester_options"):
            request["RequesterPeeringConnectionOptions"] = _peering_options(
                params["requester_options"]
            )
        if params.get("accepter_options"):
            request["AccepterPeeringConnectionOptions"] = _peering_options(
                params["accepter_options"]
            )

        response = ec2.modify_vpc_peering_connection_options(**request)

        return {
            "vpc_peering_connection_id": params["vpc_peering_connection_id"],
            "requester_options": response.get("RequesterPeeringConnectionOptions", {}),
            "accepter_options": response.get("AccepterPeeringConnectionOptions", {}),
            "region": self._region,
        }

    # VPC Implementation Methods
    async def _describe_vpc_by_name(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Find exactly one VPC carrying the given Name tag."""
        ec2 = self._clients["ec2"]

        response = ec2.describe_vpcs(
            Filters=[{"Name": "tag:Name", "Values": [params["name"]]}]
        )
        vpcs = response.get("Vpcs", [])

        if not vpcs:
            raise ToolNotFoundError(
                f"No VPC named '{params['name']}' in region {self._region}",
                code="NotFound",
            )
        if len(vpcs) > 1:
            raise ToolError(
                f"{len(vpcs)} VPCs named '{params['name']}' in region {self._region}; "
                "the name must be unique",
                code="Ambiguous",
            )

        vpc = vpcs[0]
        return {
            "vpc_id": vpc["VpcId"],
            "cidr_block": vpc.get("CidrBlock"),
            "state": vpc.get("State"),
            "region": self._region,
        }

    # Secrets Implementation Methods
    async def _create_secret(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Create a secret with a generated value, adopting one that exists."""
        secrets = self._clients["secretsmanager"]

        password = secrets.get_random_password(
            PasswordLength=params.get("password_length", 32),
            ExcludePunctuation=params.get("exclude_punctuation", True),
            IncludeSpace=params.get("include_space", False),
        )["RandomPassword"]

        create_params: Dict[str, Any] = {
            "Name": params["name"],
            "SecretString": password,
        }
        if params.get("description"):
            create_params["Description"] = params["description"]
        if params.get("tags"):
            create_params["Tags"] = [
                {"Key": k, "Value": v} for k, v in params["tags"].items()
            ]

        try:
            response = secrets.create_secret(**create_params)
        except botocore.exceptions.ClientError as e:
            if e.response["Error"]["Code"] != "ResourceExistsException":
                raise
            existing = secrets.describe_secret(SecretId=params["name"])
            return {
                "arn": existing["ARN"],
                "name": existing["Name"],
                "created": False,
            }

        return {
            "arn": response["ARN"],
            "name": response["Name"],
            "created": True,
        }

    async def _describe_secret(self, params: Dict[str, Any]) -> Dict[str, Any]:
        secrets = self._clients["secretsmanager"]

        response = secrets.describe_secret(SecretId=params["secret_id"])

        return {
            "arn": response["ARN"],
            "name": response["Name"],
            "description": response.get("Description", ""),
        }

    async def _delete_secret(self, params: Dict[str, Any]) -> Dict[str, Any]:
        secrets = self._clients["secretsmanager"]

        response = secrets.delete_secret(
            SecretId=params["secret_id"],
            RecoveryWindowInDays=params.get("recovery_window_in_days", 7),
        )

        return {
            "arn": response["ARN"],
            "name": response["Name"],
            "deletion_date": str(response.get("DeletionDate", "")),
            "requested_at": datetime.utcnow().isoformat(),
        }

    # Utility Implementation Methods
    async def _get_account_info(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Get AWS account information."""
        sts = self._clients["sts"]

        identity = sts.get_caller_identity()

        return {
            "account_id": identity["Account"],
            "user_id": identity["UserId"],
            "arn": identity["Arn"],
            "region": self._region,
        }

    async def cleanup(self) -> None:
        """Clean up AWS connections."""
        self._clients.clear()
        self._session = None
        self.logger.info("AWS tool cleanup completed")


def _peering_options(options: Dict[str, Any]) -> Dict[str, Any]:
    """Translate snake_case peering options into the EC2 request shape."""
    mapping = {
        "allow_dns_resolution_from_remote_vpc": "AllowDnsResolutionFromRemoteVpc",
    }
    return {mapping.get(key, key): value for key, value in options.items()}
