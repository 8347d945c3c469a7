"""Cloud Run provisioner for the tracking server."""

import ipaddress
import re
from typing import Any, Dict, Optional

from mlstack.state.models import ResourceKind
from mlstack.utils.errors import PermanentProviderError

from .gcloud import GcloudProvisioner

SERVICE_HANDLE = re.compile(
    r"projects/(?P<project>[^/]+)/locations/(?P<region>[^/]+)/services/(?P<name>[^/]+)"
)

# gcloud alternate delimiter syntax, so values may contain commas
ENV_DELIMITER = "##"


class DeployedServiceProvisioner(GcloudProvisioner):
    """Container service connected to the database and the artifact bucket.

    The container must bind every interface on the declared port and gets
    its connection parameters from the required environment variables.
    """

    kind = ResourceKind.DEPLOYED_SERVICE
    REQUIRED_SERVICES = ("run.googleapis.com", "sqladmin.googleapis.com")

    def resource_name(self, attributes: Dict[str, Any]) -> str:
        return (
            f"projects/{attributes.get('project')}/locations/{attributes['region']}"
            f"/services/{attributes['name']}"
        )

    def validate(self, resource_id: str, attributes: Dict[str, Any]) -> None:
        super().validate(resource_id, attributes)
        attrs = self.parse(attributes)

        empty = [name for name in attrs.required_env if not str(attrs.env.get(name, "")).strip()]
        if empty:
            raise PermanentProviderError(
                f"Required environment variables are empty after resolution: {', '.join(empty)}",
                context=self._context(resource_id=resource_id),
                suggestions=["Check the references used to build these values"]
            )

        if not ipaddress.ip_address(attrs.host).is_unspecified:
            raise PermanentProviderError(
                f"host must bind every interface (0.0.0.0 or ::), got {attrs.host}",
                context=self._context(resource_id=resource_id)
            )

    def exists(self, handle: str) -> bool:
        return self._describe_raw(handle) is not None

    def create(self, attributes: Dict[str, Any]) -> str:
        return self._deploy(attributes)

    def update(self, handle: str, attributes: Dict[str, Any]) -> str:
        # deploy replaces the full revision configuration
        return self._deploy(attributes)

    def delete(self, handle: str) -> None:
        parts = self._split_handle(handle, SERVICE_HANDLE)
        self.logger.info(f"Deleting service {parts['name']} in {parts['region']}")
        self.runner.run(
            [
                "run", "services", "delete", parts["name"],
                f"--region={parts['region']}",
                f"--project={parts['project']}",
            ],
            context=self._context(handle),
            allow_missing=True
        )

    def describe(self, handle: str) -> Dict[str, Any]:
        parts = self._split_handle(handle, SERVICE_HANDLE)
        data = self._describe_raw(handle) or {}
        containers = data.get("spec", {}).get("template", {}).get("spec", {}).get("containers", [])
        return {
            "name": parts["name"],
            "region": parts["region"],
            "project": parts["project"],
            "url": data.get("status", {}).get("url"),
            "image": containers[0].get("image") if containers else None,
        }

    def _deploy(self, attributes: Dict[str, Any]) -> str:
        attrs = self.parse(attributes)
        handle = self.resource_name(attributes)

        env_vars = ENV_DELIMITER.join(f"{key}={value}" for key, value in sorted(attrs.env.items()))
        args = [
            "run", "deploy", attrs.name,
            f"--image={attrs.image}",
            f"--region={attrs.region}",
            f"--project={attrs.project}",
            "--platform=managed",
            f"--port={attrs.port}",
            f"--memory={attrs.memory}",
            f"--cpu={attrs.cpu}",
            f"--min-instances={attrs.min_instances}",
            f"--max-instances={attrs.max_instances}",
            f"--timeout={attrs.timeout}",
            self._bool_flag("allow-unauthenticated", attrs.allow_unauthenticated),
        ]
        if env_vars:
            args.append(f"--set-env-vars=^{ENV_DELIMITER}^{env_vars}")
        if attrs.cloudsql_instances:
            args.append(f"--set-cloudsql-instances={','.join(attrs.cloudsql_instances)}")

        self.logger.info(f"Deploying service {attrs.name} from {attrs.image}")
        self.runner.run(args, context=self._context(handle))
        return handle

    def _describe_raw(self, handle: str) -> Optional[Dict[str, Any]]:
        parts = self._split_handle(handle, SERVICE_HANDLE)
        return self.runner.run(
            [
                "run", "services", "describe", parts["name"],
                f"--region={parts['region']}",
                f"--project={parts['project']}",
            ],
            context=self._context(handle),
            allow_missing=True
        )
