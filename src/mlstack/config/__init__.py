"""Configuration: desired state files, attribute schemas, settings and secrets."""

from .models import (
    ATTRIBUTE_MODELS,
    ContainerImageAttributes,
    DatabaseAttributes,
    DatabaseInstanceAttributes,
    DatabaseUserAttributes,
    DeployedServiceAttributes,
    DesiredStateFile,
    Placeholder,
    ProjectConfig,
    RetryConfig,
    StorageBucketAttributes,
    iter_placeholders,
    validate_attributes,
)
from .parser import ConfigValidationError, DesiredStateConfig, load_desired_state
from .secrets import SecretStore
from .settings import Settings, get_settings

__all__ = [
    "ATTRIBUTE_MODELS",
    "ConfigValidationError",
    "ContainerImageAttributes",
    "DatabaseAttributes",
    "DatabaseInstanceAttributes",
    "DatabaseUserAttributes",
    "DeployedServiceAttributes",
    "DesiredStateConfig",
    "DesiredStateFile",
    "Placeholder",
    "ProjectConfig",
    "RetryConfig",
    "SecretStore",
    "Settings",
    "StorageBucketAttributes",
    "get_settings",
    "iter_placeholders",
    "load_desired_state",
    "validate_attributes",
]
