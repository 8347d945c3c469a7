"""Resource and state data models."""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel, Field, field_validator

from mlstack.utils.errors import DuplicateIdError


class ResourceKind(str, Enum):
    """Kinds of infrastructure resources the engine can manage."""

    DATABASE_INSTANCE = "DatabaseInstance"
    DATABASE = "Database"
    DATABASE_USER = "DatabaseUser"
    STORAGE_BUCKET = "StorageBucket"
    CONTAINER_IMAGE = "ContainerImage"
    DEPLOYED_SERVICE = "DeployedService"


def compute_spec_hash(attributes: Dict[str, Any]) -> str:
    """Stable sha256 of attributes, independent of key order."""
    canonical = json.dumps(attributes, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResourceSpec(BaseModel):
    """Declared target configuration of one resource."""

    id: str = Field(..., min_length=1, description="Logical resource ID, unique in a desired state")
    kind: ResourceKind = Field(..., description="Resource kind")
    attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Provider-interpreted configuration"
    )
    depends_on: List[str] = Field(
        default_factory=list, description="IDs that must be applied before this resource"
    )

    @field_validator("depends_on")
    @classmethod
    def normalize_depends_on(cls, v: List[str]) -> List[str]:
        """Sort and de-duplicate dependency IDs."""
        return sorted(set(v))

    def spec_hash(self) -> str:
        """Hash of the declared (unresolved) attributes."""
        return compute_spec_hash(self.attributes)


class DesiredState:
    """Target resource topology for one invocation, keyed by resource ID."""

    def __init__(self, specs: Optional[Iterable[ResourceSpec]] = None):
        self._specs: Dict[str, ResourceSpec] = {}
        for spec in specs or []:
            self.add(spec)

    def add(self, spec: ResourceSpec) -> None:
        """Add a resource spec.

        Raises:
            DuplicateIdError: If a spec with the same ID is already present
        """
        if spec.id in self._specs:
            raise DuplicateIdError(spec.id)
        self._specs[spec.id] = spec

    def get(self, resource_id: str) -> Optional[ResourceSpec]:
        return self._specs.get(resource_id)

    def ids(self) -> List[str]:
        return sorted(self._specs)

    def specs(self) -> List[ResourceSpec]:
        return [self._specs[resource_id] for resource_id in self.ids()]

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._specs

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self.specs())

    def __len__(self) -> int:
        return len(self._specs)


class ObservedRecord(BaseModel):
    """What was last applied for one resource."""

    kind: ResourceKind = Field(..., description="Resource kind")
    exists: bool = Field(..., description="Whether the resource currently exists at the provider")
    provider_handle: Optional[str] = Field(None, description="Provider-side identifier")
    spec_hash: Optional[str] = Field(None, description="Attribute hash at last successful apply")
    last_applied_at: Optional[datetime] = Field(None, description="Time of last successful apply")
    depends_on: List[str] = Field(
        default_factory=list, description="Dependency IDs at last successful apply"
    )


class StateDocument(BaseModel):
    """On-disk layout of the state file."""

    version: str = Field("1", description="State file format version")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="Last write time")
    resources: Dict[str, ObservedRecord] = Field(
        default_factory=dict, description="Records keyed by resource ID"
    )
