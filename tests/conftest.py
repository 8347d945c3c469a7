"""Shared test fixtures."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import pytest

from mlstack.orchestrator.executor import Executor
from mlstack.provisioners.base import BaseProvisioner, ResourceProvider
from mlstack.state.manager import StateStore
from mlstack.state.models import DesiredState, ResourceKind, ResourceSpec
from mlstack.utils.errors import PermanentProviderError
from mlstack.utils.retry import RetryStrategy


def pytest_configure(config):
    """Keep engine logging quiet unless a test asks for it."""
    logging.basicConfig(level=logging.WARNING, force=True)


class FakeCloud:
    """In-memory provider side shared by every fake provisioner."""

    def __init__(self):
        self.resources: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, str], List[Exception]] = {}

    def fail(self, operation: str, handle: str, *errors: Exception) -> None:
        """Raise the given errors, in order, on the next calls of operation on handle."""
        self._failures.setdefault((operation, handle), []).extend(errors)

    def record(self, operation: str, handle: str) -> None:
        self.calls.append((operation, handle))
        pending = self._failures.get((operation, handle))
        if pending:
            raise pending.pop(0)

    def mutations(self) -> List[Tuple[str, str]]:
        """create/update/delete calls in order."""
        return [call for call in self.calls if call[0] in ("create", "update", "delete")]

    def reset_calls(self) -> None:
        self.calls.clear()


class FakeProvisioner(BaseProvisioner):
    """Provisioner whose handle is the name attribute."""

    def __init__(self, kind: ResourceKind, cloud: FakeCloud):
        self.kind = kind
        self.cloud = cloud

    def prepare(self, attributes: Dict[str, Any]) -> None:
        self.cloud.record("prepare", self.resource_name(attributes))

    def exists(self, handle: str) -> bool:
        self.cloud.record("exists", handle)
        return handle in self.cloud.resources

    def create(self, attributes: Dict[str, Any]) -> str:
        handle = self.resource_name(attributes)
        self.cloud.record("create", handle)
        self.cloud.resources[handle] = dict(attributes)
        return handle

    def update(self, handle: str, attributes: Dict[str, Any]) -> str:
        self.cloud.record("update", handle)
        self.cloud.resources[handle] = dict(attributes)
        return handle

    def delete(self, handle: str) -> None:
        self.cloud.record("delete", handle)
        self.cloud.resources.pop(handle, None)

    def describe(self, handle: str) -> Dict[str, Any]:
        self.cloud.record("describe", handle)
        if handle not in self.cloud.resources:
            raise PermanentProviderError(f"{handle} not found")
        return {**self.cloud.resources[handle], "url": f"gs://{handle}"}


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def provider(cloud):
    return ResourceProvider({kind: FakeProvisioner(kind, cloud) for kind in ResourceKind})


@pytest.fixture
def store(tmp_path):
    return StateStore(str(tmp_path / "state.json"), lock_timeout=2.0)


@pytest.fixture
def retry():
    return RetryStrategy(max_retries=3, base_delay=0.0, max_delay=0.0, jitter=False, sleep=lambda _: None)


@pytest.fixture
def executor(retry):
    return Executor(retry=retry)


def bucket(resource_id: str, depends_on: Optional[List[str]] = None, **attributes) -> ResourceSpec:
    """StorageBucket spec named after its id."""
    attrs = {"name": f"bucket-{resource_id}", "project": "test-project"}
    attrs.update(attributes)
    return ResourceSpec(
        id=resource_id,
        kind=ResourceKind.STORAGE_BUCKET,
        attributes=attrs,
        depends_on=depends_on or [],
    )


@pytest.fixture
def abcd_desired():
    """A <- B, A <- C, {B, C} <- D."""
    return DesiredState([
        bucket("a"),
        bucket("b", ["a"]),
        bucket("c", ["a"]),
        bucket("d", ["b", "c"]),
    ])


@pytest.fixture
def scenario_desired():
    """Database instance A, database B on A, bucket C, service D on B and C."""
    project = "test-project"
    return DesiredState([
        ResourceSpec(
            id="A",
            kind=ResourceKind.DATABASE_INSTANCE,
            attributes={"name": "db-a", "region": "europe-west9", "project": project},
        ),
        ResourceSpec(
            id="B",
            kind=ResourceKind.DATABASE,
            attributes={"name": "mlflow", "instance": "${A.name}", "project": project},
            depends_on=["A"],
        ),
        ResourceSpec(
            id="C",
            kind=ResourceKind.STORAGE_BUCKET,
            attributes={"name": "bucket-c", "project": project},
        ),
        ResourceSpec(
            id="D",
            kind=ResourceKind.DEPLOYED_SERVICE,
            attributes={
                "name": "svc-d",
                "image": "europe-west9-docker.pkg.dev/test-project/repo/server:latest",
                "region": "europe-west9",
                "project": project,
                "env": {
                    "DB_URI": "postgresql+psycopg2://user@/${B.name}?host=/cloudsql/${A.name}",
                    "ARTIFACT_ROOT": "${C.url}",
                },
            },
            depends_on=["B", "C"],
        ),
    ])
