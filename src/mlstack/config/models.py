"""Pydantic models for the desired state file and per-kind attributes."""

import ipaddress
import re
from typing import Any, ClassVar, Dict, List, Optional, Type

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from mlstack.state.models import ResourceKind
from mlstack.utils.errors import AttributeValidationError, ErrorContext

# ${env:NAME} or ${resource-id.attribute}
PLACEHOLDER_PATTERN = re.compile(r"\$\{([^}]+)\}")
ENV_PLACEHOLDER_PATTERN = re.compile(r"^\$\{env:([A-Za-z_][A-Za-z0-9_]*)\}$")
RESOURCE_ID_PATTERN = "^[A-Za-z0-9][A-Za-z0-9_-]*$"


def _require_env_placeholder(value: Optional[str], field_name: str, info: ValidationInfo) -> Optional[str]:
    """Secrets must come from the environment, never from the file."""
    if info.context and info.context.get("resolved"):
        return value
    if value is not None and not ENV_PLACEHOLDER_PATTERN.match(value):
        raise ValueError(f"{field_name} must be an environment reference like ${{env:NAME}}")
    return value


class AttributesModel(BaseModel):
    """Base class of per-kind attribute schemas."""

    model_config = ConfigDict(extra="forbid")

    # Attribute name -> project key it defaults from
    PROJECT_DEFAULTS: ClassVar[Dict[str, str]] = {"project": "name"}

    project: Optional[str] = Field(None, description="Cloud project ID")


class DatabaseInstanceAttributes(AttributesModel):
    """Managed PostgreSQL instance."""

    PROJECT_DEFAULTS: ClassVar[Dict[str, str]] = {"project": "name", "region": "region"}

    name: str = Field(..., min_length=1, max_length=98, pattern="^[a-z][a-z0-9-]*$")
    region: str = Field(..., min_length=1)
    database_version: str = Field("POSTGRES_15", pattern="^POSTGRES_[0-9]+$")
    tier: str = Field("db-f1-micro", min_length=1)
    storage_type: str = Field("SSD", pattern="^(SSD|HDD)$")
    storage_size: str = Field("10GB", pattern="^[0-9]+GB$")
    storage_auto_increase: bool = True
    root_password: Optional[str] = None
    backup_start_time: str = Field("03:00", pattern="^([01][0-9]|2[0-3]):[0-5][0-9]$")
    maintenance_window_day: str = Field("SUN", pattern="^(MON|TUE|WED|THU|FRI|SAT|SUN)$")
    maintenance_window_hour: int = Field(4, ge=0, le=23)

    @field_validator("root_password")
    @classmethod
    def validate_root_password(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        return _require_env_placeholder(v, "root_password", info)


class DatabaseAttributes(AttributesModel):
    """Logical database inside an instance."""

    name: str = Field(..., min_length=1, max_length=63)
    instance: str = Field(..., min_length=1, description="Instance name or ${id.name} reference")
    charset: Optional[str] = None


class DatabaseUserAttributes(AttributesModel):
    """Login user of an instance."""

    name: str = Field(..., min_length=1, max_length=63)
    instance: str = Field(..., min_length=1, description="Instance name or ${id.name} reference")
    password: str = Field(..., description="${env:NAME} reference")

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str, info: ValidationInfo) -> str:
        return _require_env_placeholder(v, "password", info)


class StorageBucketAttributes(AttributesModel):
    """Artifact bucket with optional lifecycle deletion."""

    name: str = Field(..., min_length=3, max_length=63, pattern="^[a-z0-9][a-z0-9._-]*[a-z0-9]$")
    location: str = Field("EU", min_length=1)
    storage_class: str = Field("STANDARD", pattern="^(STANDARD|NEARLINE|COLDLINE|ARCHIVE)$")
    versioning: bool = True
    uniform_access: bool = True
    lifecycle_days: Optional[int] = Field(90, ge=1, description="Delete objects older than N days")


class ContainerImageAttributes(AttributesModel):
    """Pushed image in a docker repository; the repository is ensured."""

    PROJECT_DEFAULTS: ClassVar[Dict[str, str]] = {"project": "name", "location": "region"}

    repository: str = Field(..., min_length=1, pattern="^[a-z][a-z0-9-]*$")
    location: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    tag: str = Field("latest", min_length=1)
    description: Optional[str] = None


class DeployedServiceAttributes(AttributesModel):
    """Container service running the tracking server."""

    PROJECT_DEFAULTS: ClassVar[Dict[str, str]] = {"project": "name", "region": "region"}

    name: str = Field(..., min_length=1, max_length=49, pattern="^[a-z][a-z0-9-]*$")
    image: str = Field(..., min_length=1)
    region: str = Field(..., min_length=1)
    host: str = Field("0.0.0.0", description="Interface the server binds to")
    port: int = Field(8080, ge=1, le=65535)
    env: Dict[str, str] = Field(default_factory=dict)
    required_env: List[str] = Field(default_factory=lambda: ["DB_URI", "ARTIFACT_ROOT"])
    cloudsql_instances: List[str] = Field(default_factory=list)
    memory: str = Field("2Gi", pattern="^[0-9]+(Mi|Gi)$")
    cpu: int = Field(1, ge=1, le=8)
    min_instances: int = Field(0, ge=0)
    max_instances: int = Field(10, ge=1)
    timeout: int = Field(3600, ge=1, le=3600)
    allow_unauthenticated: bool = True

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        try:
            ipaddress.ip_address(v)
        except ValueError:
            raise ValueError(f"host must be an IP address: {v}")
        return v

    @model_validator(mode="after")
    def validate_runtime_contract(self):
        """Every required connection parameter must be declared."""
        missing = [name for name in self.required_env if name not in self.env]
        if missing:
            raise ValueError(f"env is missing required variables: {', '.join(missing)}")
        if self.min_instances > self.max_instances:
            raise ValueError("min_instances cannot exceed max_instances")
        return self


ATTRIBUTE_MODELS: Dict[ResourceKind, Type[AttributesModel]] = {
    ResourceKind.DATABASE_INSTANCE: DatabaseInstanceAttributes,
    ResourceKind.DATABASE: DatabaseAttributes,
    ResourceKind.DATABASE_USER: DatabaseUserAttributes,
    ResourceKind.STORAGE_BUCKET: StorageBucketAttributes,
    ResourceKind.CONTAINER_IMAGE: ContainerImageAttributes,
    ResourceKind.DEPLOYED_SERVICE: DeployedServiceAttributes,
}


def validate_attributes(
    resource_id: str,
    kind: ResourceKind,
    attributes: Dict[str, Any],
    resolved: bool = False
) -> AttributesModel:
    """Validate attributes against the schema of their kind.

    With resolved=True the values are post-substitution, so secrets are
    plain values instead of ${env:NAME} references.

    Raises:
        AttributeValidationError: With every failing field listed
    """
    model = ATTRIBUTE_MODELS[kind]
    try:
        return model.model_validate(attributes, context={"resolved": resolved})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc']) or kind.value}: {error['msg']}"
            for error in e.errors()
        )
        raise AttributeValidationError(
            f"Invalid attributes for {kind.value} '{resource_id}': {problems}",
            context=ErrorContext(resource_id=resource_id, resource_kind=kind.value),
            cause=e
        )


def apply_project_defaults(
    kind: ResourceKind,
    attributes: Dict[str, Any],
    project: "ProjectConfig"
) -> Dict[str, Any]:
    """Fill attributes the kind takes from the project section, when absent."""
    merged = dict(attributes)
    project_values = project.model_dump()
    for attribute, project_key in ATTRIBUTE_MODELS[kind].PROJECT_DEFAULTS.items():
        value = project_values.get(project_key)
        if attribute not in merged and value is not None:
            merged[attribute] = value
    return merged


class ProjectConfig(BaseModel):
    """Project-level defaults shared by every resource."""

    name: Optional[str] = Field(None, min_length=1, description="Cloud project ID")
    region: Optional[str] = Field(None, min_length=1, description="Default region")


class RetryConfig(BaseModel):
    """Executor retry policy for transient provider errors."""

    max_retries: int = Field(5, ge=1, description="Total attempts before giving up")
    base_delay: float = Field(1.0, ge=0, description="Initial backoff in seconds")
    max_delay: float = Field(60.0, ge=0, description="Backoff ceiling in seconds")
    exponential_base: float = Field(2.0, ge=1)
    jitter: bool = True

    @model_validator(mode="after")
    def validate_delays(self):
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay cannot exceed max_delay")
        return self


class ResourceEntry(BaseModel):
    """One entry of the `resources` list in the desired state file."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., pattern=RESOURCE_ID_PATTERN)
    kind: ResourceKind
    attributes: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)


class DesiredStateFile(BaseModel):
    """Top-level schema of the desired state file."""

    model_config = ConfigDict(extra="forbid")

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    resources: List[ResourceEntry] = Field(..., min_length=1)


class Placeholder(BaseModel):
    """A parsed ${...} reference inside an attribute value."""

    model_config = ConfigDict(frozen=True)

    raw: str
    env_name: Optional[str] = None
    resource_id: Optional[str] = None
    attribute: Optional[str] = None

    @property
    def is_env(self) -> bool:
        return self.env_name is not None


def parse_placeholder(body: str) -> Placeholder:
    """Parse the inside of ${...}.

    Raises:
        ValueError: If the body is neither env:NAME nor resource-id.attribute
    """
    raw = "${" + body + "}"
    if body.startswith("env:"):
        name = body[len("env:"):]
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", name):
            raise ValueError(f"Invalid environment reference: {raw}")
        return Placeholder(raw=raw, env_name=name)

    resource_id, dot, attribute = body.partition(".")
    if not dot or not attribute or not re.match(RESOURCE_ID_PATTERN, resource_id):
        raise ValueError(f"Invalid reference {raw}: expected ${{resource-id.attribute}}")
    return Placeholder(raw=raw, resource_id=resource_id, attribute=attribute)


def iter_placeholders(value: Any):
    """Yield every placeholder found in nested attribute values."""
    if isinstance(value, str):
        for match in PLACEHOLDER_PATTERN.finditer(value):
            yield parse_placeholder(match.group(1))
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_placeholders(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_placeholders(item)
