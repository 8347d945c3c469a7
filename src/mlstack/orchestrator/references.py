"""Resolution of ${env:NAME} and ${resource-id.attribute} placeholders."""

from typing import Any, Dict

from mlstack.config.models import PLACEHOLDER_PATTERN, parse_placeholder
from mlstack.config.secrets import SecretStore
from mlstack.provisioners.base import ResourceProvider
from mlstack.state.manager import StateStore
from mlstack.state.models import ResourceSpec
from mlstack.utils.errors import ErrorContext, PermanentProviderError
from mlstack.utils.logging import get_logger

logger = get_logger(__name__)


class ReferenceResolver:
    """Substitutes placeholders in attributes right before a provider call.

    Resolved values are handed to the provisioner only. They are never
    hashed, recorded or logged.
    """

    def __init__(self, provider: ResourceProvider, store: StateStore, secrets: SecretStore):
        self.provider = provider
        self.store = store
        self.secrets = secrets

    def resolve(self, spec: ResourceSpec) -> Dict[str, Any]:
        """Resolved copy of the resource's attributes.

        Raises:
            ConfigurationError: If a referenced secret was not loaded
            PermanentProviderError: If a referenced resource has no recorded
                handle or lacks the attribute
        """
        outputs: Dict[str, Dict[str, Any]] = {}
        return self._resolve_value(spec, spec.attributes, outputs)

    def _resolve_value(self, spec: ResourceSpec, value: Any, outputs: Dict[str, Dict[str, Any]]) -> Any:
        if isinstance(value, dict):
            return {key: self._resolve_value(spec, item, outputs) for key, item in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(spec, item, outputs) for item in value]
        if not isinstance(value, str):
            return value

        whole = PLACEHOLDER_PATTERN.fullmatch(value)
        if whole:
            return self._lookup(spec, whole.group(1), outputs)

        return PLACEHOLDER_PATTERN.sub(
            lambda match: str(self._lookup(spec, match.group(1), outputs)),
            value
        )

    def _lookup(self, spec: ResourceSpec, body: str, outputs: Dict[str, Dict[str, Any]]) -> Any:
        placeholder = parse_placeholder(body)
        if placeholder.is_env:
            return self.secrets.get(placeholder.env_name)

        target_id = placeholder.resource_id
        if target_id not in outputs:
            outputs[target_id] = self._describe(spec, target_id)

        value: Any = outputs[target_id]
        for part in placeholder.attribute.split("."):
            if not isinstance(value, dict) or part not in value:
                raise PermanentProviderError(
                    f"Resource '{target_id}' has no attribute '{placeholder.attribute}' "
                    f"referenced as {placeholder.raw}",
                    context=ErrorContext(resource_id=spec.id, resource_kind=spec.kind.value)
                )
            value = value[part]
        return value

    def _describe(self, spec: ResourceSpec, target_id: str) -> Dict[str, Any]:
        record = self.store.get(target_id)
        if record is None or not record.exists or not record.provider_handle:
            raise PermanentProviderError(
                f"Referenced resource '{target_id}' has not been applied",
                context=ErrorContext(resource_id=spec.id, resource_kind=spec.kind.value)
            )

        logger.debug(f"Reading outputs of {target_id} for {spec.id}")
        return self.provider.get(record.kind).describe(record.provider_handle)
