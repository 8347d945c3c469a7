"""Base provisioner interface and the kind-to-provisioner registry."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from mlstack.config.models import validate_attributes
from mlstack.state.models import ResourceKind
from mlstack.utils.errors import AttributeValidationError, ErrorContext, PermanentProviderError


class BaseProvisioner(ABC):
    """Capability set the engine needs for one resource kind."""

    kind: ResourceKind

    def resource_name(self, attributes: Dict[str, Any]) -> str:
        """Provider handle a create with these attributes would produce.

        Used to detect a resource that exists at the provider but was never
        recorded, e.g. after a crash between create and the state write.
        """
        return attributes["name"]

    def validate(self, resource_id: str, attributes: Dict[str, Any]) -> None:
        """Check resolved attributes right before a provider call.

        Raises:
            PermanentProviderError: If the attributes cannot be applied
        """
        try:
            validate_attributes(resource_id, self.kind, attributes, resolved=True)
        except AttributeValidationError as e:
            raise PermanentProviderError(
                f"Resolved attributes are invalid: {e}",
                context=ErrorContext(resource_id=resource_id, resource_kind=self.kind.value),
                cause=e
            )

    def prepare(self, attributes: Dict[str, Any]) -> None:
        """Set up what the provider needs before the first create, e.g. APIs."""

    @abstractmethod
    def exists(self, handle: str) -> bool:
        """Check whether the resource exists at the provider.

        Args:
            handle: Provider handle of the resource

        Returns:
            True if it exists
        """
        pass

    @abstractmethod
    def create(self, attributes: Dict[str, Any]) -> str:
        """Create the resource.

        Args:
            attributes: Resolved attributes

        Returns:
            Provider handle of the new resource
        """
        pass

    @abstractmethod
    def update(self, handle: str, attributes: Dict[str, Any]) -> str:
        """Bring an existing resource to the given attributes.

        Args:
            handle: Provider handle of the resource
            attributes: Resolved attributes

        Returns:
            Provider handle, which may change
        """
        pass

    @abstractmethod
    def delete(self, handle: str) -> None:
        """Delete the resource. Deleting a missing resource is not an error.

        Args:
            handle: Provider handle of the resource
        """
        pass

    @abstractmethod
    def describe(self, handle: str) -> Dict[str, Any]:
        """Fetch the current attributes and outputs of the resource.

        Args:
            handle: Provider handle of the resource

        Returns:
            Attribute mapping; referenced as ${resource-id.key} by dependents
        """
        pass


class ResourceProvider:
    """Routes each resource kind to its provisioner."""

    def __init__(self, provisioners: Optional[Mapping[ResourceKind, BaseProvisioner]] = None):
        self._provisioners: Dict[ResourceKind, BaseProvisioner] = dict(provisioners or {})

    def register(self, kind: ResourceKind, provisioner: BaseProvisioner) -> None:
        self._provisioners[kind] = provisioner

    def get(self, kind: ResourceKind) -> BaseProvisioner:
        """Provisioner for a kind.

        Raises:
            PermanentProviderError: If no provisioner is registered for the kind
        """
        provisioner = self._provisioners.get(kind)
        if provisioner is None:
            raise PermanentProviderError(
                f"No provisioner registered for resource kind: {kind.value}",
                context=ErrorContext(resource_kind=kind.value)
            )
        return provisioner

    def supports(self, kind: ResourceKind) -> bool:
        return kind in self._provisioners
