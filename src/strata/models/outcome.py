"""Dispatch outcomes and deployment results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field

from strata.core.exceptions import DispatchError, ErrorKind
from strata.models.resource import ProvisionedResource


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of one attempt: a decoded payload or a classified failure."""

    attempt: int
    payload: Optional[dict[str, Any]] = None
    error: Optional[DispatchError] = None
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable


@dataclass
class DispatchResult:
    """Final successful outcome of a call, with its retry history."""

    payload: dict[str, Any]
    attempts: int
    delays: list[float] = field(default_factory=list)
    outcomes: list[DispatchOutcome] = field(default_factory=list)


class Operation(StrEnum):
    DEPLOY = "deploy"
    DESTROY = "destroy"


class FailedResource(BaseModel):
    logical_id: str
    error_kind: ErrorKind
    message: str = ""


class DeploymentResult(BaseModel):
    """Per-resource account of one deploy or destroy run."""

    operation: Operation
    succeeded: list[str] = Field(default_factory=list)
    failed: list[FailedResource] = Field(default_factory=list)
    not_attempted: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    cancelled: bool = False
    layers: list[list[str]] = Field(default_factory=list)
    resources: dict[str, ProvisionedResource] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.not_attempted and not self.cancelled

    @property
    def failed_ids(self) -> list[str]:
        return [f.logical_id for f in self.failed]
