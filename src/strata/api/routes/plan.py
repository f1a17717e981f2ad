"""Deployment plan endpoint: ordering and layering without provisioning."""

from __future__ import annotations

from typing import Any

import pydantic
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from strata.core.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    DanglingDependencyError,
)
from strata.orchestration.unit import DeploymentPlan, DeploymentUnit

router = APIRouter(tags=["plan"])


class PlanRequest(BaseModel):
    name: str
    template: dict[str, Any]
    parameters: dict[str, Any] = Field(default_factory=dict)


def _error_detail(exc: ConfigurationError) -> dict[str, Any]:
    detail: dict[str, Any] = {"error": str(exc.kind), "message": str(exc)}
    if isinstance(exc, DanglingDependencyError):
        detail["logical_id"] = exc.logical_id
        detail["missing"] = exc.missing
    elif isinstance(exc, CircularDependencyError):
        detail["logical_id"] = exc.logical_id
        detail["cycle"] = exc.cycle
    return detail


@router.post("/plan")
async def create_plan(request: PlanRequest) -> DeploymentPlan:
    """Return creation order, creation layers and deletion layers for a template."""
    try:
        unit = DeploymentUnit.from_template(request.name, request.template, request.parameters)
        return unit.plan()
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=_error_detail(exc)) from exc
    except pydantic.ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"error": "configuration", "message": f"Invalid resource definition: {exc}"},
        ) from exc
