"""Plan executor with per-action state writes, cancellation and bounded parallelism."""

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from mlstack.config.secrets import SecretStore
from mlstack.orchestrator.dependency_graph import DependencyGraph
from mlstack.orchestrator.planner import Action, Operation, Plan
from mlstack.orchestrator.references import ReferenceResolver
from mlstack.provisioners.base import BaseProvisioner, ResourceProvider
from mlstack.state.manager import StateStore
from mlstack.state.models import ObservedRecord
from mlstack.utils.errors import (
    DeploymentError,
    ErrorContext,
    StateStoreError,
    error_handler,
)
from mlstack.utils.logging import get_logger
from mlstack.utils.retry import RetryStrategy

logger = get_logger(__name__)


class ExecutionStatus(Enum):
    """Outcome of one action."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOT_APPLIED = "not_applied"


class ApplyStatus(Enum):
    """Outcome of a whole apply."""
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ResourceResult:
    """Result of executing a single action."""

    resource_id: str
    operation: Operation
    status: ExecutionStatus
    provider_handle: Optional[str] = None
    error: Optional[DeploymentError] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        return self.status in (ExecutionStatus.APPLIED, ExecutionStatus.SKIPPED)

    def is_failed(self) -> bool:
        return self.status == ExecutionStatus.FAILED


@dataclass
class ApplyReport:
    """Per-resource outcome of one apply, in plan order."""

    status: ApplyStatus
    results: List[ResourceResult] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        return self.status == ApplyStatus.SUCCESS

    def get(self, resource_id: str) -> Optional[ResourceResult]:
        for result in self.results:
            if result.resource_id == resource_id:
                return result
        return None

    @property
    def failed_resource_id(self) -> Optional[str]:
        for result in self.results:
            if result.is_failed():
                return result.resource_id
        return None

    @property
    def error(self) -> Optional[DeploymentError]:
        for result in self.results:
            if result.is_failed():
                return result.error
        return None

    def applied_ids(self) -> List[str]:
        return self._ids(ExecutionStatus.APPLIED)

    def skipped_ids(self) -> List[str]:
        return self._ids(ExecutionStatus.SKIPPED)

    def not_applied_ids(self) -> List[str]:
        return self._ids(ExecutionStatus.NOT_APPLIED)

    def _ids(self, status: ExecutionStatus) -> List[str]:
        return [result.resource_id for result in self.results if result.status == status]


class Executor:
    """Applies a plan action by action.

    Nothing is ever rolled back: the record of every successful action is
    written before the next action starts, so a rerun after a failure or
    crash resumes where this one stopped.
    """

    def __init__(
        self,
        retry: Optional[RetryStrategy] = None,
        secrets: Optional[SecretStore] = None,
        max_workers: int = 1
    ):
        """Initialize executor.

        Args:
            retry: Retry policy for provider calls
            secrets: Secrets referenced by ${env:NAME} placeholders
            max_workers: Actions allowed to run at once; 1 runs in plan order
        """
        self.retry = retry or RetryStrategy()
        self.secrets = secrets or SecretStore()
        self.max_workers = max(1, max_workers)
        self.logger = get_logger(__name__)

    def apply(
        self,
        plan: Plan,
        provider: ResourceProvider,
        store: StateStore,
        cancel_event: Optional[threading.Event] = None
    ) -> ApplyReport:
        """Execute a plan.

        Args:
            plan: Plan to execute
            provider: Provisioners by resource kind
            store: Where each successful action is recorded
            cancel_event: Set to stop before the next action starts

        Returns:
            ApplyReport with one result per plan action

        Raises:
            StateStoreError: If a record cannot be written; the apply stops
        """
        cancel_event = cancel_event or threading.Event()
        resolver = ReferenceResolver(provider, store, self.secrets)

        self.logger.info(
            f"Applying {len(plan.changes())} change(s) "
            f"({len(plan.actions)} action(s), max_workers={self.max_workers})"
        )
        start_time = datetime.utcnow()
        started = time.monotonic()

        if self.max_workers > 1 and len(plan.actions) > 1:
            results, cancelled = self._apply_parallel(plan, provider, store, resolver, cancel_event)
        else:
            results, cancelled = self._apply_sequential(plan, provider, store, resolver, cancel_event)

        ordered = []
        for action in plan.actions:
            result = results.get(action.resource_id)
            if result is None:
                result = ResourceResult(
                    resource_id=action.resource_id,
                    operation=action.operation,
                    status=ExecutionStatus.NOT_APPLIED
                )
            ordered.append(result)

        if any(result.is_failed() for result in ordered):
            status = ApplyStatus.FAILED
        elif cancelled:
            status = ApplyStatus.CANCELLED
        else:
            status = ApplyStatus.SUCCESS

        report = ApplyReport(
            status=status,
            results=ordered,
            start_time=start_time,
            end_time=datetime.utcnow(),
            duration=time.monotonic() - started
        )
        self._log_report(report)
        return report

    def _apply_sequential(
        self,
        plan: Plan,
        provider: ResourceProvider,
        store: StateStore,
        resolver: ReferenceResolver,
        cancel_event: threading.Event
    ):
        results: Dict[str, ResourceResult] = {}

        for action in plan.actions:
            if cancel_event.is_set():
                self.logger.warning(f"Apply cancelled before {action.resource_id}")
                return results, True

            result = self._execute(action, provider, store, resolver)
            results[action.resource_id] = result
            if result.is_failed():
                break

        return results, False

    def _apply_parallel(
        self,
        plan: Plan,
        provider: ResourceProvider,
        store: StateStore,
        resolver: ReferenceResolver,
        cancel_event: threading.Event
    ):
        """Run unrelated actions concurrently.

        An action starts only after every earlier plan action it is related
        to (as ancestor or descendant) has succeeded. Deletions all finish
        before any other action starts.
        """
        waits_for = self._wait_sets(plan)
        results: Dict[str, ResourceResult] = {}
        pending = list(range(len(plan.actions)))
        succeeded: Set[int] = set()
        running: Dict[Future, int] = {}
        stopped = False
        cancelled = False

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while True:
                if not stopped and pending and cancel_event.is_set():
                    self.logger.warning("Apply cancelled; waiting for running actions")
                    stopped = cancelled = True

                if not stopped:
                    for index in list(pending):
                        if len(running) >= self.max_workers:
                            break
                        if waits_for[index] <= succeeded:
                            pending.remove(index)
                            future = pool.submit(
                                self._execute, plan.actions[index], provider, store, resolver
                            )
                            running[future] = index

                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    index = running.pop(future)
                    # StateStoreError propagates from here
                    result = future.result()
                    results[result.resource_id] = result
                    if result.is_failed():
                        stopped = True
                    else:
                        succeeded.add(index)

        return results, cancelled

    @staticmethod
    def _wait_sets(plan: Plan) -> List[Set[int]]:
        """Indices of earlier actions each action must wait for."""
        graph = DependencyGraph.from_edges(plan.dependency_edges())
        ancestors = {
            action.resource_id: graph.get_all_dependencies(action.resource_id)
            for action in plan.actions
        }

        waits_for = []
        for j, later in enumerate(plan.actions):
            earlier_set = set()
            for i, earlier in enumerate(plan.actions[:j]):
                related = (
                    earlier.resource_id in ancestors[later.resource_id]
                    or later.resource_id in ancestors[earlier.resource_id]
                )
                phase_change = (
                    earlier.operation == Operation.DELETE
                    and later.operation != Operation.DELETE
                )
                if related or phase_change:
                    earlier_set.add(i)
            waits_for.append(earlier_set)
        return waits_for

    def _execute(
        self,
        action: Action,
        provider: ResourceProvider,
        store: StateStore,
        resolver: ReferenceResolver
    ) -> ResourceResult:
        """Execute one action and record it.

        Raises:
            StateStoreError: If the state store cannot be read or written
        """
        resource_id = action.resource_id
        log_fields = {
            'resource_id': resource_id,
            'resource_kind': action.spec.kind.value,
            'operation': action.operation.value,
        }
        started = time.monotonic()

        if action.operation == Operation.SKIP:
            record = store.get(resource_id)
            self.logger.debug("Up to date, skipping", extra=log_fields)
            return ResourceResult(
                resource_id=resource_id,
                operation=action.operation,
                status=ExecutionStatus.SKIPPED,
                provider_handle=record.provider_handle if record else None
            )

        self.logger.info(f"Starting {action.operation.value} ({action.reason})", extra=log_fields)

        try:
            provisioner = provider.get(action.spec.kind)
            handle = self.retry.execute_with_retry(
                self._call_provider, action, provisioner, store, resolver
            )
        except StateStoreError:
            raise
        except Exception as e:
            error = error_handler.handle_exception(
                e,
                ErrorContext(
                    resource_id=resource_id,
                    resource_kind=action.spec.kind.value,
                    operation=action.operation.value
                )
            )
            duration = time.monotonic() - started
            self.logger.error(
                f"{action.operation.value} failed [{error.error_class}]: {error.message}",
                extra={**log_fields, 'duration': duration}
            )
            return ResourceResult(
                resource_id=resource_id,
                operation=action.operation,
                status=ExecutionStatus.FAILED,
                error=error,
                duration=duration
            )

        store.put(resource_id, self._record_for(action, handle))

        duration = time.monotonic() - started
        self.logger.info(
            f"Finished {action.operation.value} in {duration:.1f}s",
            extra={**log_fields, 'duration': duration}
        )
        return ResourceResult(
            resource_id=resource_id,
            operation=action.operation,
            status=ExecutionStatus.APPLIED,
            provider_handle=handle,
            duration=duration
        )

    def _call_provider(
        self,
        action: Action,
        provisioner: BaseProvisioner,
        store: StateStore,
        resolver: ReferenceResolver
    ) -> Optional[str]:
        """One attempt at the provider call behind an action.

        Returns:
            Provider handle after the call
        """
        resource_id = action.resource_id
        record = store.get(resource_id)

        if action.operation == Operation.DELETE:
            if record is None or not record.provider_handle:
                self.logger.info("No recorded handle, nothing to delete", extra={'resource_id': resource_id})
                return None
            provisioner.delete(record.provider_handle)
            return record.provider_handle

        attributes = resolver.resolve(action.spec)
        provisioner.validate(resource_id, attributes)

        if action.operation == Operation.UPDATE and record is not None and record.provider_handle:
            return provisioner.update(record.provider_handle, attributes)

        # Create, adopting a resource that exists without a record
        provisioner.prepare(attributes)
        name = provisioner.resource_name(attributes)
        if provisioner.exists(name):
            self.logger.info(
                f"Resource {name} already exists, adopting it",
                extra={'resource_id': resource_id}
            )
            return provisioner.update(name, attributes)
        return provisioner.create(attributes)

    @staticmethod
    def _record_for(action: Action, handle: Optional[str]) -> ObservedRecord:
        if action.operation == Operation.DELETE:
            return ObservedRecord(
                kind=action.spec.kind,
                exists=False,
                provider_handle=handle,
                spec_hash=None,
                last_applied_at=datetime.utcnow(),
                depends_on=action.spec.depends_on
            )
        return ObservedRecord(
            kind=action.spec.kind,
            exists=True,
            provider_handle=handle,
            spec_hash=action.spec.spec_hash(),
            last_applied_at=datetime.utcnow(),
            depends_on=action.spec.depends_on
        )

    def _log_report(self, report: ApplyReport) -> None:
        if report.status == ApplyStatus.SUCCESS:
            self.logger.info(
                f"Apply completed: {len(report.applied_ids())} applied, "
                f"{len(report.skipped_ids())} unchanged in {report.duration:.1f}s"
            )
        elif report.status == ApplyStatus.CANCELLED:
            self.logger.warning(
                f"Apply cancelled: {len(report.applied_ids())} applied, "
                f"{len(report.not_applied_ids())} not applied"
            )
        else:
            error = report.error
            self.logger.error(
                f"Apply failed at {report.failed_resource_id} "
                f"[{error.error_class if error else 'unknown'}]: "
                f"{len(report.not_applied_ids())} action(s) not applied"
            )
