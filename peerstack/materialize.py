"""
Adopt-or-create for values shared between regional units.

A shared value (typically a secret) is either supplied as an existing
handle, in which case it is adopted untouched, or created once and its new
handle published for downstream units. The primary region's unit creates;
the secondary region's unit adopts the handle the primary published.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from .errors import MaterializeError
from .graph.models import Existing, OptionalMaterialize, ToCreate, unwrap_value
from .tools.registry import RegionalToolRegistry


class MaterializeOutcome(BaseModel):
    """The handle a slot resolved to and whether this run created it."""

    handle: str
    created: bool
    region: str


def choose(maybe_handle: Any, create_params: Dict[str, Any]) -> OptionalMaterialize:
    """Pick the adopt branch for a non-empty handle, otherwise the create branch."""
    if isinstance(maybe_handle, (Existing, ToCreate)):
        return maybe_handle
    handle = unwrap_value(maybe_handle)
    if handle is not None and str(handle).strip():
        return Existing(handle=str(handle))
    return ToCreate(params=dict(create_params))


class Materializer(ABC):
    """
    Resolves adopt-or-create slots.

    Outcomes are cached per key, so a slot resolves once and its published
    handle stays the same for the rest of the run.
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._outcomes: Dict[Any, MaterializeOutcome] = {}

    async def materialize(
        self,
        maybe_handle: Any,
        create_params: Dict[str, Any],
        region: str,
        key: Optional[Any] = None,
    ) -> MaterializeOutcome:
        if key is not None and key in self._outcomes:
            return self._outcomes[key]

        choice = choose(maybe_handle, create_params)
        if isinstance(choice, Existing):
            self.logger.info(
                "Adopting existing handle",
                extra={"handle": choice.handle, "region": region, "phase": "adopt"},
            )
            outcome = MaterializeOutcome(handle=choice.handle, created=False, region=region)
        else:
            outcome = await self._create(choice.params, region)
            if not outcome.handle:
                raise MaterializeError(
                    f"Creating {choice.params.get('secret_name') or 'value'} "
                    "returned no handle"
                )
            self.logger.info(
                "Materialized new handle",
                extra={
                    "handle": outcome.handle,
                    "region": region,
                    "phase": "create",
                    "newly_created": outcome.created,
                },
            )

        if key is not None:
            self._outcomes[key] = outcome
        return outcome

    async def recover(
        self, create_params: Dict[str, Any], region: str, key: Optional[Any] = None
    ) -> Optional[MaterializeOutcome]:
        """
        Find a value an earlier run created under its deterministic name.

        A recovered value counts as created by this deployment, so destroy
        deletes it. Returns None when nothing was created under that name.
        """
        if key is not None and key in self._outcomes:
            return self._outcomes[key]

        handle = await self._find(create_params, region)
        if not handle:
            return None

        self.logger.info(
            "Recovered created handle",
            extra={"handle": handle, "region": region, "phase": "recover"},
        )
        outcome = MaterializeOutcome(handle=handle, created=True, region=region)
        if key is not None:
            self._outcomes[key] = outcome
        return outcome

    def created_handles(self) -> List[Tuple[str, str]]:
        """(region, handle) pairs this run created, oldest first."""
        return [
            (outcome.region, outcome.handle)
            for outcome in self._outcomes.values()
            if outcome.created
        ]

    @abstractmethod
    async def _create(self, params: Dict[str, Any], region: str) -> MaterializeOutcome:
        """Create a new value and return its handle."""

    async def _find(self, params: Dict[str, Any], region: str) -> Optional[str]:
        """Return the handle of a value already created with these params."""
        return None

    async def delete(self, handle: str, region: str) -> None:
        """Delete a value this run created."""


class SecretMaterializer(Materializer):
    """Creates shared secrets with a generated value in Secrets Manager."""

    def __init__(self, registry: Optional[RegionalToolRegistry] = None):
        super().__init__()
        self.registry = registry or RegionalToolRegistry()

    async def _create(self, params: Dict[str, Any], region: str) -> MaterializeOutcome:
        if not params.get("secret_name"):
            raise MaterializeError("A secret name is required to create a secret")

        tool = await self.registry.get(region)
        result = await tool.execute(
            "create_secret",
            {
                "name": params["secret_name"],
                "description": params.get("description", ""),
                "password_length": params.get("password_length", 64),
                "exclude_punctuation": params.get("exclude_punctuation", True),
                "include_space": params.get("include_space", False),
            },
        )
        if not result.success:
            raise MaterializeError(
                f"Failed to create secret {params['secret_name']}: {result.error}"
            )

        if not result.output.get("created", True):
            # a re-run finds the secret the previous run created
            self.logger.info(
                f"Secret {params['secret_name']} already exists, adopting it",
                extra={"region": region, "phase": "adopt"},
            )
        return MaterializeOutcome(
            handle=result.output.get("arn", ""),
            created=bool(result.output.get("created", True)),
            region=region,
        )

    async def _find(self, params: Dict[str, Any], region: str) -> Optional[str]:
        if not params.get("secret_name"):
            return None

        tool = await self.registry.get(region)
        result = await tool.execute("describe_secret", {"secret_id": params["secret_name"]})
        if not result.success:
            if result.error_code in ("ResourceNotFoundException", "NotFound"):
                return None
            raise MaterializeError(
                f"Failed to describe secret {params['secret_name']}: {result.error}"
            )
        return result.output.get("arn")

    async def delete(self, handle: str, region: str) -> None:
        tool = await self.registry.get(region)
        result = await tool.execute("delete_secret", {"secret_id": handle})
        if not result.success:
            raise MaterializeError(f"Failed to delete secret {handle}: {result.error}")


class PlannedSecretMaterializer(Materializer):
    """Invents deterministic secret ARNs without creating anything."""

    def __init__(self, account: Optional[str] = None):
        super().__init__()
        self.account = account or "000000000000"
        self.deleted: List[str] = []

    def _arn(self, name: str, region: str) -> str:
        suffix = hashlib.sha256(f"{region}:{name}".encode()).hexdigest()[:6]
        return f"arn:aws:secretsmanager:{region}:{self.account}:secret:{name}-{suffix}"

    async def _create(self, params: Dict[str, Any], region: str) -> MaterializeOutcome:
        name = params.get("secret_name") or "secret"
        return MaterializeOutcome(
            handle=self._arn(name, region), created=True, region=region
        )

    async def _find(self, params: Dict[str, Any], region: str) -> Optional[str]:
        # planned secrets always exist under their deterministic ARN
        return self._arn(params.get("secret_name") or "secret", region)

    async def delete(self, handle: str, region: str) -> None:
        self.deleted.append(handle)
