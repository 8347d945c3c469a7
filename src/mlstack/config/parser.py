"""YAML parser for desired state files."""

from pathlib import Path
from typing import Dict, List, Optional, Set

import yaml
from pydantic import ValidationError

from mlstack.state.models import DesiredState, ResourceSpec
from mlstack.utils.errors import ConfigurationError

from .models import (
    DesiredStateFile,
    ProjectConfig,
    RetryConfig,
    apply_project_defaults,
    iter_placeholders,
)


class ConfigValidationError(ConfigurationError):
    """Exception raised when the desired state file fails validation."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.errors = errors or []
        super().__init__(message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class DesiredStateConfig:
    """Loads a desired state file into a DesiredState and its retry policy."""

    def __init__(self, config_path: str):
        """Initialize the loader.

        Args:
            config_path: Path to the desired state YAML file
        """
        self.config_path = Path(config_path)
        self.data: Dict = {}
        self.project: ProjectConfig = ProjectConfig()
        self.retry: RetryConfig = RetryConfig()
        self.desired: DesiredState = DesiredState()

    def load(self) -> "DesiredStateConfig":
        """Load and validate the file.

        Returns:
            Self for method chaining

        Raises:
            ConfigurationError: If the file is missing or not valid YAML
            ConfigValidationError: If the file does not match the schema
            DuplicateIdError: If two resources share an id
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"Desired state file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}")

        if not isinstance(self.data, dict):
            raise ConfigValidationError("Desired state file must contain a mapping")

        validation_errors = self.validate()
        if validation_errors:
            raise ConfigValidationError(
                f"Desired state validation failed with {len(validation_errors)} error(s)",
                validation_errors,
            )

        parsed = DesiredStateFile(**self.data)
        self.project = parsed.project
        self.retry = parsed.retry

        desired = DesiredState()
        for entry in parsed.resources:
            desired.add(
                ResourceSpec(
                    id=entry.id,
                    kind=entry.kind,
                    attributes=apply_project_defaults(entry.kind, entry.attributes, self.project),
                    depends_on=entry.depends_on,
                )
            )
        self.desired = desired

        return self

    def validate(self) -> List[Dict]:
        """Validate the raw file against the schema.

        Returns:
            List of validation errors (empty if valid)
        """
        try:
            DesiredStateFile(**self.data)
        except ValidationError as e:
            return [{"loc": list(error["loc"]), "msg": error["msg"]} for error in e.errors()]
        return []

    def secret_names(self) -> Set[str]:
        """Names of every ${env:NAME} reference in the loaded resources.

        Raises:
            ConfigValidationError: If a placeholder is malformed
        """
        names = set()
        for spec in self.desired:
            try:
                for placeholder in iter_placeholders(spec.attributes):
                    if placeholder.is_env:
                        names.add(placeholder.env_name)
            except ValueError as e:
                raise ConfigValidationError(
                    "Desired state validation failed",
                    [{"loc": ["resources", spec.id, "attributes"], "msg": str(e)}],
                )
        return names


def load_desired_state(config_path: str) -> DesiredStateConfig:
    """Load a desired state file."""
    return DesiredStateConfig(config_path).load()
