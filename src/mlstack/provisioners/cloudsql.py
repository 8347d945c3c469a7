"""Cloud SQL provisioners: PostgreSQL instance, database and user."""

import re
from typing import Any, Dict, Optional

from mlstack.state.models import ResourceKind

from .gcloud import GcloudProvisioner

INSTANCE_HANDLE = re.compile(r"projects/(?P<project>[^/]+)/instances/(?P<instance>[^/]+)")
DATABASE_HANDLE = re.compile(
    r"projects/(?P<project>[^/]+)/instances/(?P<instance>[^/]+)/databases/(?P<name>[^/]+)"
)
USER_HANDLE = re.compile(
    r"projects/(?P<project>[^/]+)/instances/(?P<instance>[^/]+)/users/(?P<name>[^/]+)"
)

# Superuser created with every PostgreSQL instance
ROOT_USER = "postgres"


class DatabaseInstanceProvisioner(GcloudProvisioner):
    """Managed PostgreSQL instance with backups and a maintenance window."""

    kind = ResourceKind.DATABASE_INSTANCE
    REQUIRED_SERVICES = ("sqladmin.googleapis.com",)

    def resource_name(self, attributes: Dict[str, Any]) -> str:
        return f"projects/{attributes.get('project')}/instances/{attributes['name']}"

    def exists(self, handle: str) -> bool:
        return self._describe_raw(handle) is not None

    def create(self, attributes: Dict[str, Any]) -> str:
        attrs = self.parse(attributes)
        handle = self.resource_name(attributes)

        self.logger.info(
            f"Creating Cloud SQL instance {attrs.name} ({attrs.database_version}, {attrs.tier}, "
            f"{attrs.region}); this usually takes 5-10 minutes"
        )
        args = [
            "sql", "instances", "create", attrs.name,
            f"--project={attrs.project}",
            f"--database-version={attrs.database_version}",
            f"--tier={attrs.tier}",
            f"--region={attrs.region}",
            f"--storage-type={attrs.storage_type}",
            f"--storage-size={attrs.storage_size}",
            self._bool_flag("storage-auto-increase", attrs.storage_auto_increase),
            f"--backup-start-time={attrs.backup_start_time}",
            f"--maintenance-window-day={attrs.maintenance_window_day}",
            f"--maintenance-window-hour={attrs.maintenance_window_hour}",
        ]
        if attrs.root_password:
            args.append(f"--root-password={attrs.root_password}")

        self.runner.run(args, context=self._context(handle))
        return handle

    def update(self, handle: str, attributes: Dict[str, Any]) -> str:
        attrs = self.parse(attributes)
        current = self._describe_raw(handle) or {}
        self._require_unchanged(handle, "region", current.get("region"), attrs.region)
        self._require_unchanged(
            handle, "database_version", current.get("databaseVersion"), attrs.database_version
        )

        self.logger.info(f"Patching Cloud SQL instance {attrs.name}")
        self.runner.run(
            [
                "sql", "instances", "patch", attrs.name,
                f"--project={attrs.project}",
                f"--tier={attrs.tier}",
                f"--storage-size={attrs.storage_size}",
                self._bool_flag("storage-auto-increase", attrs.storage_auto_increase),
                f"--backup-start-time={attrs.backup_start_time}",
                f"--maintenance-window-day={attrs.maintenance_window_day}",
                f"--maintenance-window-hour={attrs.maintenance_window_hour}",
            ],
            context=self._context(handle)
        )

        if attrs.root_password:
            self.runner.run(
                [
                    "sql", "users", "set-password", ROOT_USER,
                    f"--instance={attrs.name}",
                    f"--project={attrs.project}",
                    f"--password={attrs.root_password}",
                ],
                context=self._context(handle)
            )
        return handle

    def delete(self, handle: str) -> None:
        parts = self._split_handle(handle, INSTANCE_HANDLE)
        self.logger.info(f"Deleting Cloud SQL instance {parts['instance']}")
        self.runner.run(
            ["sql", "instances", "delete", parts["instance"], f"--project={parts['project']}"],
            context=self._context(handle),
            allow_missing=True
        )

    def describe(self, handle: str) -> Dict[str, Any]:
        data = self._describe_raw(handle) or {}
        settings = data.get("settings", {})
        return {
            "name": data.get("name"),
            "project": data.get("project"),
            "region": data.get("region"),
            "connection_name": data.get("connectionName"),
            "database_version": data.get("databaseVersion"),
            "tier": settings.get("tier"),
            "state": data.get("state"),
            "ip_addresses": [ip.get("ipAddress") for ip in data.get("ipAddresses", [])],
        }

    def _describe_raw(self, handle: str) -> Optional[Dict[str, Any]]:
        parts = self._split_handle(handle, INSTANCE_HANDLE)
        return self.runner.run(
            ["sql", "instances", "describe", parts["instance"], f"--project={parts['project']}"],
            context=self._context(handle),
            allow_missing=True
        )


class DatabaseProvisioner(GcloudProvisioner):
    """Logical database inside an instance."""

    kind = ResourceKind.DATABASE
    REQUIRED_SERVICES = ("sqladmin.googleapis.com",)

    def resource_name(self, attributes: Dict[str, Any]) -> str:
        return (
            f"projects/{attributes.get('project')}/instances/{attributes['instance']}"
            f"/databases/{attributes['name']}"
        )

    def exists(self, handle: str) -> bool:
        return self._describe_raw(handle) is not None

    def create(self, attributes: Dict[str, Any]) -> str:
        attrs = self.parse(attributes)
        handle = self.resource_name(attributes)

        self.logger.info(f"Creating database {attrs.name} on {attrs.instance}")
        args = [
            "sql", "databases", "create", attrs.name,
            f"--instance={attrs.instance}",
            f"--project={attrs.project}",
        ]
        if attrs.charset:
            args.append(f"--charset={attrs.charset}")

        self.runner.run(args, context=self._context(handle))
        return handle

    def update(self, handle: str, attributes: Dict[str, Any]) -> str:
        attrs = self.parse(attributes)
        if attrs.charset:
            self.runner.run(
                [
                    "sql", "databases", "patch", attrs.name,
                    f"--instance={attrs.instance}",
                    f"--project={attrs.project}",
                    f"--charset={attrs.charset}",
                ],
                context=self._context(handle)
            )
        return self.resource_name(attributes)

    def delete(self, handle: str) -> None:
        parts = self._split_handle(handle, DATABASE_HANDLE)
        self.logger.info(f"Deleting database {parts['name']} on {parts['instance']}")
        self.runner.run(
            [
                "sql", "databases", "delete", parts["name"],
                f"--instance={parts['instance']}",
                f"--project={parts['project']}",
            ],
            context=self._context(handle),
            allow_missing=True
        )

    def describe(self, handle: str) -> Dict[str, Any]:
        data = self._describe_raw(handle) or {}
        return {
            "name": data.get("name"),
            "instance": data.get("instance"),
            "project": data.get("project"),
            "charset": data.get("charset"),
            "collation": data.get("collation"),
        }

    def _describe_raw(self, handle: str) -> Optional[Dict[str, Any]]:
        parts = self._split_handle(handle, DATABASE_HANDLE)
        return self.runner.run(
            [
                "sql", "databases", "describe", parts["name"],
                f"--instance={parts['instance']}",
                f"--project={parts['project']}",
            ],
            context=self._context(handle),
            allow_missing=True
        )


class DatabaseUserProvisioner(GcloudProvisioner):
    """Login user of an instance. The password is set on create and update."""

    kind = ResourceKind.DATABASE_USER
    REQUIRED_SERVICES = ("sqladmin.googleapis.com",)

    def resource_name(self, attributes: Dict[str, Any]) -> str:
        return (
            f"projects/{attributes.get('project')}/instances/{attributes['instance']}"
            f"/users/{attributes['name']}"
        )

    def exists(self, handle: str) -> bool:
        return self._find(handle) is not None

    def create(self, attributes: Dict[str, Any]) -> str:
        attrs = self.parse(attributes)
        handle = self.resource_name(attributes)

        self.logger.info(f"Creating database user {attrs.name} on {attrs.instance}")
        self.runner.run(
            [
                "sql", "users", "create", attrs.name,
                f"--instance={attrs.instance}",
                f"--project={attrs.project}",
                f"--password={attrs.password}",
            ],
            context=self._context(handle)
        )
        return handle

    def update(self, handle: str, attributes: Dict[str, Any]) -> str:
        attrs = self.parse(attributes)
        self.logger.info(f"Setting password of database user {attrs.name}")
        self.runner.run(
            [
                "sql", "users", "set-password", attrs.name,
                f"--instance={attrs.instance}",
                f"--project={attrs.project}",
                f"--password={attrs.password}",
            ],
            context=self._context(handle)
        )
        return self.resource_name(attributes)

    def delete(self, handle: str) -> None:
        parts = self._split_handle(handle, USER_HANDLE)
        self.logger.info(f"Deleting database user {parts['name']} on {parts['instance']}")
        self.runner.run(
            [
                "sql", "users", "delete", parts["name"],
                f"--instance={parts['instance']}",
                f"--project={parts['project']}",
            ],
            context=self._context(handle),
            allow_missing=True
        )

    def describe(self, handle: str) -> Dict[str, Any]:
        user = self._find(handle) or {}
        parts = self._split_handle(handle, USER_HANDLE)
        return {
            "name": user.get("name"),
            "instance": parts["instance"],
            "project": parts["project"],
            "type": user.get("type"),
        }

    def _find(self, handle: str) -> Optional[Dict[str, Any]]:
        parts = self._split_handle(handle, USER_HANDLE)
        users = self.runner.run(
            [
                "sql", "users", "list",
                f"--instance={parts['instance']}",
                f"--project={parts['project']}",
            ],
            context=self._context(handle),
            allow_missing=True
        ) or []
        for user in users:
            if user.get("name") == parts["name"]:
                return user
        return None
