"""Provisioners module for resource management through the gcloud CLI."""

from mlstack.config.settings import Settings
from mlstack.state.models import ResourceKind

from .base import BaseProvisioner, ResourceProvider
from .gcloud import GcloudProvisioner, GcloudRunner
from .cloudsql import DatabaseInstanceProvisioner, DatabaseProvisioner, DatabaseUserProvisioner
from .storage import StorageBucketProvisioner
from .artifact_registry import ContainerImageProvisioner
from .cloud_run import DeployedServiceProvisioner


def create_provider(settings: Settings) -> ResourceProvider:
    """Provider with a gcloud provisioner for every resource kind."""
    runner = GcloudRunner(gcloud_path=settings.gcloud_path, timeout=settings.command_timeout)
    return ResourceProvider({
        ResourceKind.DATABASE_INSTANCE: DatabaseInstanceProvisioner(runner),
        ResourceKind.DATABASE: DatabaseProvisioner(runner),
        ResourceKind.DATABASE_USER: DatabaseUserProvisioner(runner),
        ResourceKind.STORAGE_BUCKET: StorageBucketProvisioner(runner),
        ResourceKind.CONTAINER_IMAGE: ContainerImageProvisioner(runner),
        ResourceKind.DEPLOYED_SERVICE: DeployedServiceProvisioner(runner),
    })


__all__ = [
    'BaseProvisioner',
    'ResourceProvider',
    'GcloudProvisioner',
    'GcloudRunner',
    'DatabaseInstanceProvisioner',
    'DatabaseProvisioner',
    'DatabaseUserProvisioner',
    'StorageBucketProvisioner',
    'ContainerImageProvisioner',
    'DeployedServiceProvisioner',
    'create_provider',
]
