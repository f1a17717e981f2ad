"""Resource definitions, graph nodes and reference markers."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReferenceKind(StrEnum):
    REF = "Ref"
    GET_ATT = "Fn::GetAtt"


class Reference(BaseModel):
    """A reference marker found inside a definition."""

    model_config = ConfigDict(frozen=True)

    kind: ReferenceKind
    target: str
    attribute: Optional[str] = None

    @property
    def is_pseudo_parameter(self) -> bool:
        return self.kind is ReferenceKind.REF and self.target.startswith("AWS::")


class ResourceDefinition(BaseModel):
    """One entry of a template's Resources section.

    Keys the model does not name (UpdateReplacePolicy, CreationPolicy, ...) are
    kept as extras so the definition round-trips unchanged.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = Field(default="", alias="Type")
    properties: dict[str, Any] = Field(default_factory=dict, alias="Properties")
    depends_on: str | list[str] | None = Field(default=None, alias="DependsOn")
    deletion_policy: Optional[str] = Field(default=None, alias="DeletionPolicy")
    condition: Optional[str] = Field(default=None, alias="Condition")
    metadata: Optional[dict[str, Any]] = Field(default=None, alias="Metadata")

    @property
    def explicit_dependencies(self) -> list[str]:
        if self.depends_on is None:
            return []
        if isinstance(self.depends_on, str):
            return [self.depends_on]
        return list(self.depends_on)

    @property
    def retained(self) -> bool:
        return self.deletion_policy == "Retain"

    def to_template(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ResourceNode(BaseModel):
    """A resource registered in a dependency graph.

    ``dependencies`` is an ordered set: unique ids in extraction order
    (explicit DependsOn first, then references in scan order).
    """

    model_config = ConfigDict(frozen=True)

    logical_id: str
    definition: ResourceDefinition
    dependencies: tuple[str, ...] = ()

    @property
    def type_name(self) -> str:
        return self.definition.type


class ProvisionedResource(BaseModel):
    """A resource as the control plane reports it after create or update."""

    logical_id: str
    type_name: str = ""
    identifier: str
    attributes: dict[str, Any] = Field(default_factory=dict)
