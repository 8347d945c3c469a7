"""Planner: diffs desired state against observed records into an ordered plan."""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Tuple

from mlstack.config.models import iter_placeholders, validate_attributes
from mlstack.orchestrator.dependency_graph import DependencyGraph
from mlstack.state.models import DesiredState, ObservedRecord, ResourceSpec
from mlstack.utils.errors import AttributeValidationError, ErrorContext, UnknownDependencyError
from mlstack.utils.logging import get_logger

logger = get_logger(__name__)


class Operation(str, Enum):
    """What the executor does with one resource."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    DELETE = "delete"


@dataclass(frozen=True)
class Action:
    """One planned operation on one resource."""

    resource_id: str
    operation: Operation
    spec: ResourceSpec
    reason: str = ""


@dataclass(frozen=True)
class Plan:
    """Ordered, immutable list of actions plus the orphans left untouched."""

    actions: Tuple[Action, ...] = ()
    orphaned: Tuple[str, ...] = ()

    def changes(self) -> List[Action]:
        """Actions that call the provider."""
        return [action for action in self.actions if action.operation != Operation.SKIP]

    def has_changes(self) -> bool:
        return bool(self.changes())

    def summary(self) -> Dict[str, int]:
        """Action count per operation."""
        counts = Counter(action.operation for action in self.actions)
        return {operation.value: counts.get(operation, 0) for operation in Operation}

    def resource_ids(self) -> List[str]:
        return [action.resource_id for action in self.actions]

    def dependency_edges(self) -> Dict[str, List[str]]:
        """depends_on edges restricted to resources in this plan."""
        ids = set(self.resource_ids())
        return {
            action.resource_id: [dep for dep in action.spec.depends_on if dep in ids]
            for action in self.actions
        }


class Planner:
    """Builds plans. Never touches the provider or the state store."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def validate(self, desired: DesiredState) -> DependencyGraph:
        """Validate a desired state before any planning.

        Returns:
            The validated dependency graph

        Raises:
            UnknownDependencyError: Missing depends_on target or reference
                to a resource that is not a dependency
            CycleError: If depends_on edges form a cycle
            AttributeValidationError: If attributes do not match their kind
        """
        graph = DependencyGraph.from_specs(desired)
        graph.validate()

        for spec in desired:
            self._validate_references(spec, desired, graph)
            validate_attributes(spec.id, spec.kind, spec.attributes)

        return graph

    def plan(
        self,
        desired: DesiredState,
        observed: Mapping[str, ObservedRecord],
        prune: bool = False
    ) -> Plan:
        """Create a plan that converges observed onto desired.

        Args:
            desired: Target resource topology
            observed: Recorded state keyed by resource ID
            prune: Delete orphaned resources instead of only reporting them

        Returns:
            Plan whose desired actions are in dependency order

        Raises:
            SpecError: If the desired state is invalid
        """
        graph = self.validate(desired)
        order = graph.topological_sort()

        actions = []
        for resource_id in order:
            spec = desired.get(resource_id)
            operation, reason = self._diff(spec, observed.get(resource_id))
            actions.append(Action(resource_id, operation, spec, reason))

        orphaned = sorted(
            resource_id for resource_id, record in observed.items()
            if record.exists and resource_id not in desired
        )

        if orphaned:
            if prune:
                actions = self._orphan_deletes(orphaned, observed) + actions
            else:
                self.logger.warning(
                    f"{len(orphaned)} recorded resource(s) are no longer declared "
                    f"and will be left untouched: {', '.join(orphaned)}"
                )

        plan = Plan(actions=tuple(actions), orphaned=tuple(orphaned))
        self._log_summary(plan)
        return plan

    def plan_destroy(
        self,
        desired: DesiredState,
        observed: Mapping[str, ObservedRecord]
    ) -> Plan:
        """Plan deletion of every declared resource that currently exists.

        Deletions run dependents first.

        Raises:
            SpecError: If the desired state is invalid
        """
        graph = self.validate(desired)

        actions = []
        for resource_id in graph.get_destruction_order():
            record = observed.get(resource_id)
            if record is None or not record.exists:
                continue
            actions.append(
                Action(resource_id, Operation.DELETE, desired.get(resource_id), "destroy requested")
            )

        orphaned = sorted(
            resource_id for resource_id, record in observed.items()
            if record.exists and resource_id not in desired
        )

        plan = Plan(actions=tuple(actions), orphaned=tuple(orphaned))
        self._log_summary(plan)
        return plan

    def _diff(self, spec: ResourceSpec, record) -> Tuple[Operation, str]:
        if record is None:
            return Operation.CREATE, "not recorded"
        if not record.exists:
            return Operation.CREATE, "recorded as deleted"
        if record.kind != spec.kind:
            # The recorded handle belongs to the old kind's provisioner
            raise AttributeValidationError(
                f"Resource '{spec.id}' is recorded as {record.kind.value} but declared as {spec.kind.value}",
                context=ErrorContext(resource_id=spec.id, resource_kind=spec.kind.value),
                suggestions=[
                    f"Declare the new resource under a new id and remove '{spec.id}' with --prune",
                    f"Or run destroy for '{spec.id}' before changing its kind",
                ]
            )
        if record.spec_hash != spec.spec_hash():
            return Operation.UPDATE, "attributes changed"
        return Operation.SKIP, "up to date"

    def _orphan_deletes(
        self,
        orphaned: List[str],
        observed: Mapping[str, ObservedRecord]
    ) -> List[Action]:
        """DELETE actions for orphans, dependents first."""
        members = set(orphaned)
        graph = DependencyGraph.from_edges({
            resource_id: [dep for dep in observed[resource_id].depends_on if dep in members]
            for resource_id in orphaned
        })

        actions = []
        for resource_id in graph.get_destruction_order():
            record = observed[resource_id]
            # The declaration is gone; build the action from what the record knows
            spec = ResourceSpec(id=resource_id, kind=record.kind, depends_on=record.depends_on)
            actions.append(Action(resource_id, Operation.DELETE, spec, "no longer declared"))
        return actions

    def _validate_references(
        self,
        spec: ResourceSpec,
        desired: DesiredState,
        graph: DependencyGraph
    ) -> None:
        try:
            placeholders = list(iter_placeholders(spec.attributes))
        except ValueError as e:
            raise AttributeValidationError(
                str(e),
                context=ErrorContext(resource_id=spec.id, resource_kind=spec.kind.value),
                cause=e
            )

        ancestors = None
        for placeholder in placeholders:
            if placeholder.is_env:
                continue
            if placeholder.resource_id not in desired:
                raise UnknownDependencyError(spec.id, placeholder.resource_id)
            if ancestors is None:
                ancestors = graph.get_all_dependencies(spec.id)
            if placeholder.resource_id not in ancestors:
                raise UnknownDependencyError(
                    spec.id,
                    placeholder.resource_id,
                    suggestions=[
                        f"Add '{placeholder.resource_id}' to depends_on of '{spec.id}' "
                        f"to use {placeholder.raw}"
                    ]
                )

    def _log_summary(self, plan: Plan) -> None:
        summary = plan.summary()
        self.logger.info(
            f"Plan created: {summary['create']} create, {summary['update']} update, "
            f"{summary['delete']} delete, {summary['skip']} unchanged, "
            f"{len(plan.orphaned)} orphaned"
        )
