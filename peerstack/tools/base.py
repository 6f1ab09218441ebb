"""
Base control-plane tool interface.

A tool wraps one cloud control-plane endpoint (one region) and exposes a
fixed set of named actions. Every call goes through parameter validation,
and only actions the schema declares idempotent are retried.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class ToolStatus(Enum):
    """Where the tool is in its current call."""

    IDLE = "idle"
    VALIDATING = "validating"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolResult(BaseModel):
    """Outcome of one control-plane call, including its retries."""

    success: bool
    tool_name: str
    action: str
    region: Optional[str] = None
    output: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None
    duration: Optional[float] = None
    attempts: int = 1
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    normalized_params: Dict[str, Any] = Field(default_factory=dict)


class ToolConfig(BaseModel):
    """Per-region tool settings. ``region`` is filled in by the registry."""

    name: str
    version: str = "1.0.0"
    region: Optional[str] = None
    enabled: bool = True
    timeout: int = 300  # seconds
    retry_count: int = 3
    retry_delay: float = 5  # seconds
    credentials: Dict[str, Any] = Field(default_factory=dict)


class ToolSchema(BaseModel):
    """Actions a tool offers. ``{"idempotent": True}`` on an action allows retries."""

    name: str
    description: str
    version: str
    actions: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    required_permissions: List[str] = Field(default_factory=list)

    def is_idempotent(self, action: str) -> bool:
        return bool(self.actions.get(action, {}).get("idempotent", False))


class Tool(ABC):
    """
    Base tool interface for control-plane calls.

    Subclasses provide the client, the validator and the per-action
    implementation. ``execute`` never raises for action failures; it returns
    a ``ToolResult`` with ``success=False`` instead.
    """

    def __init__(self, config: ToolConfig):
        self.config = config
        self.logger = logging.getLogger(f"{self.__class__.__name__}:{config.name}")
        self.status = ToolStatus.IDLE
        self._client: Optional[Any] = None
        self._validator: Optional[Any] = None
        self._schema: Optional[ToolSchema] = None

    async def initialize(self) -> None:
        """Create the validator and the client, then check the configuration."""
        try:
            self._validator = await self._create_validator()
            self._client = await self._create_client()
            await self._validate_configuration()
        except Exception as e:
            self.logger.error(
                f"Could not initialize {self.config.name} "
                f"for region {self.config.region}: {e}"
            )
            raise ToolError(f"Initialization failed: {e}")

    async def execute(self, action: str, params: Dict[str, Any]) -> ToolResult:
        """
        Run one action against the control plane.

        Args:
            action: Name of an action in the tool's schema
            params: Action parameters, validated before the call

        Returns:
            ToolResult: The output on success, or the error and its code
        """
        started = datetime.utcnow()
        call_id = self._call_id(action, started)
        attempts = 0

        def elapsed() -> float:
            return (datetime.utcnow() - started).total_seconds()

        try:
            self.status = ToolStatus.VALIDATING
            params = await self._checked_params(action, params, call_id)

            self.status = ToolStatus.EXECUTING
            schema = await self.get_schema()
            budget = 1 + self.config.retry_count if schema.is_idempotent(action) else 1
            output, attempts = await self._execute_with_retry(action, params, budget)
        except Exception as e:
            self.status = ToolStatus.FAILED
            self.logger.error(
                "Control-plane call failed",
                extra=self._log_context(
                    action,
                    call_id,
                    "error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    duration_seconds=elapsed(),
                ),
            )
            return self._result(
                action,
                success=False,
                error=str(e),
                error_code=getattr(e, "code", None),
                attempts=max(attempts, 1),
                duration=elapsed(),
            )

        self.status = ToolStatus.COMPLETED
        return self._result(
            action, success=True, output=output, attempts=attempts, duration=elapsed()
        )

    async def validate(self, action: str, params: Dict[str, Any]) -> ValidationResult:
        """Reject unknown actions, then defer to the tool's validator if it has one."""
        supported = await self._get_supported_actions()
        if action not in supported:
            return ValidationResult(
                valid=False, errors=[f"Unsupported action: {action}"]
            )
        if self._validator is None:
            return ValidationResult(valid=True, normalized_params=params)

        outcome = self._validator.validate(action, params)
        if hasattr(outcome, "__await__"):
            outcome = await outcome
        return outcome  # type: ignore[no-any-return]

    async def get_schema(self) -> ToolSchema:
        if self._schema is None:
            self._schema = await self._build_schema()
        return self._schema

    @abstractmethod
    async def _build_schema(self) -> ToolSchema:
        """Describe the tool's actions."""

    @abstractmethod
    async def _create_client(self) -> Any:
        """Open the connection to the control plane."""

    @abstractmethod
    async def _create_validator(self) -> Any:
        """Return an object with ``validate(action, params)``, or None."""

    @abstractmethod
    async def _execute_action(
        self, action: str, params: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Perform one attempt of ``action``."""

    async def _get_supported_actions(self) -> List[str]:
        return list((await self.get_schema()).actions)

    async def _validate_configuration(self) -> None:
        if not self.config.name:
            raise ToolError("Tool name is required")

    async def _checked_params(
        self, action: str, params: Dict[str, Any], call_id: str
    ) -> Dict[str, Any]:
        validation = await self.validate(action, params)
        if validation.valid:
            return validation.normalized_params or params

        self.logger.error(
            "Rejected control-plane call parameters",
            extra=self._log_context(
                action, call_id, "validation_error", validation_errors=validation.errors
            ),
        )
        raise ToolValidationError(f"Validation failed: {validation.errors}")

    async def _execute_with_retry(
        self, action: str, params: Dict[str, Any], max_attempts: int
    ) -> Tuple[Dict[str, Any], int]:
        """Run the action up to ``max_attempts`` times; returns output and attempts used."""
        call_id = self._call_id(action, datetime.utcnow())
        last_error: Optional[str] = None

        for attempt in range(1, max_attempts + 1):
            try:
                output = await asyncio.wait_for(
                    self._execute_action(action, params), timeout=self.config.timeout
                )
                return output, attempt
            except ToolValidationError:
                raise
            except asyncio.TimeoutError:
                last_error = f"Operation timed out after {self.config.timeout} seconds"
                phase = "timeout_retry"
                error_type = "TimeoutError"
            except Exception as e:
                if attempt == max_attempts:
                    raise
                last_error = str(e)
                phase = "error_retry"
                error_type = type(e).__name__

            if attempt < max_attempts:
                self.logger.warning(
                    f"Retrying {action} ({attempt}/{max_attempts})",
                    extra=self._log_context(
                        action,
                        call_id,
                        phase,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error_type=error_type,
                        error_message=last_error,
                        retry_delay=self.config.retry_delay,
                    ),
                )
                await asyncio.sleep(self.config.retry_delay)

        self.logger.error(
            f"Giving up on {action} after {max_attempts} attempts",
            extra=self._log_context(
                action,
                call_id,
                "retry_exhausted",
                total_attempts=max_attempts,
                final_error=last_error,
            ),
        )
        raise ToolError(f"Action failed after {max_attempts} attempts: {last_error}")

    def _call_id(self, action: str, at: datetime) -> str:
        return f"{self.config.name}_{action}_{int(at.timestamp())}"

    def _log_context(
        self, action: str, call_id: str, phase: str, **fields: Any
    ) -> Dict[str, Any]:
        context = {
            "tool_name": self.config.name,
            "region": self.config.region,
            "operation_id": call_id,
            "action": action,
            "operation": "tool_execution",
            "phase": phase,
        }
        context.update(fields)
        return context

    def _result(self, action: str, **fields: Any) -> ToolResult:
        return ToolResult(
            tool_name=self.config.name,
            action=action,
            region=self.config.region,
            **fields,
        )


class ToolError(Exception):
    """A control-plane call failed. ``code`` carries the provider's error code."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ToolValidationError(ToolError):
    """Action parameters were rejected before any call was made."""


class ToolNotFoundError(ToolError):
    """Exception raised when a looked-up resource does not exist."""
