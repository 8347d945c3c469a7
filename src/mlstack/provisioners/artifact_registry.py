"""Artifact Registry provisioner for the server container image."""

import re
from typing import Any, Dict

from mlstack.config.models import ContainerImageAttributes
from mlstack.state.models import ResourceKind
from mlstack.utils.errors import PermanentProviderError

from .gcloud import GcloudProvisioner

IMAGE_HANDLE = re.compile(
    r"(?P<location>[^/]+)-docker\.pkg\.dev/(?P<project>[^/]+)/(?P<repository>[^/]+)"
    r"/(?P<image>[^:]+):(?P<tag>[^:/]+)"
)


class ContainerImageProvisioner(GcloudProvisioner):
    """Ensures the docker repository exists and the image tag is pushed.

    Building and pushing the image happen outside the engine; create fails
    permanently until the tag is present. The handle is the image URI.
    """

    kind = ResourceKind.CONTAINER_IMAGE
    REQUIRED_SERVICES = ("artifactregistry.googleapis.com",)

    def resource_name(self, attributes: Dict[str, Any]) -> str:
        return (
            f"{attributes['location']}-docker.pkg.dev/{attributes.get('project')}"
            f"/{attributes['repository']}/{attributes['image']}:{attributes.get('tag', 'latest')}"
        )

    def exists(self, handle: str) -> bool:
        return self._describe_image(handle) is not None

    def create(self, attributes: Dict[str, Any]) -> str:
        attrs = self.parse(attributes)
        handle = self.resource_name(attributes)

        self._ensure_repository(handle, attrs)
        if self._describe_image(handle) is None:
            raise PermanentProviderError(
                f"Image {handle} has not been pushed",
                context=self._context(handle),
                suggestions=[
                    f"gcloud auth configure-docker {attrs.location}-docker.pkg.dev",
                    f"docker build --platform linux/amd64 -t {handle} .",
                    f"docker push {handle}",
                ]
            )
        return handle

    def update(self, handle: str, attributes: Dict[str, Any]) -> str:
        # The handle follows the attributes; a new tag is a new image
        return self.create(attributes)

    def delete(self, handle: str) -> None:
        self.logger.info(f"Deleting image {handle}")
        self.runner.run(
            ["artifacts", "docker", "images", "delete", handle, "--delete-tags"],
            context=self._context(handle),
            parse_json=False,
            allow_missing=True
        )

    def describe(self, handle: str) -> Dict[str, Any]:
        parts = self._split_handle(handle, IMAGE_HANDLE)
        data = self._describe_image(handle) or {}
        summary = data.get("image_summary", {})
        return {
            "uri": handle,
            "digest": summary.get("digest"),
            "fully_qualified_digest": summary.get("fully_qualified_digest"),
            **parts,
        }

    def _ensure_repository(self, handle: str, attrs: ContainerImageAttributes) -> None:
        location_args = [f"--location={attrs.location}", f"--project={attrs.project}"]
        repository = self.runner.run(
            ["artifacts", "repositories", "describe", attrs.repository, *location_args],
            context=self._context(handle),
            allow_missing=True
        )
        if repository is not None:
            return

        self.logger.info(f"Creating docker repository {attrs.repository} in {attrs.location}")
        args = [
            "artifacts", "repositories", "create", attrs.repository,
            "--repository-format=docker",
            *location_args,
        ]
        if attrs.description:
            args.append(f"--description={attrs.description}")
        self.runner.run(args, context=self._context(handle))

    def _describe_image(self, handle: str):
        return self.runner.run(
            ["artifacts", "docker", "images", "describe", handle],
            context=self._context(handle),
            allow_missing=True
        )
