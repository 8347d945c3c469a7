"""Main orchestrator that coordinates planning and execution."""

import threading
from typing import Optional

from mlstack.config.parser import DesiredStateConfig
from mlstack.config.secrets import SecretStore
from mlstack.orchestrator.executor import ApplyReport, Executor
from mlstack.orchestrator.planner import Plan, Planner
from mlstack.provisioners.base import ResourceProvider
from mlstack.state.manager import StateStore
from mlstack.utils.logging import get_logger
from mlstack.utils.retry import RetryStrategy

logger = get_logger(__name__)


class Orchestrator:
    """Runs plan, apply and destroy for one desired state file."""

    def __init__(
        self,
        config: DesiredStateConfig,
        store: StateStore,
        provider: ResourceProvider,
        secrets: Optional[SecretStore] = None,
        max_workers: int = 1
    ):
        """Initialize orchestrator.

        Args:
            config: Loaded desired state file
            store: State store of the environment
            provider: Provisioners by resource kind
            secrets: Secrets referenced by the desired state
            max_workers: Actions allowed to run at once
        """
        self.config = config
        self.store = store
        self.provider = provider
        self.secrets = secrets or SecretStore()

        self.planner = Planner()
        self.executor = Executor(
            retry=RetryStrategy(**config.retry.model_dump()),
            secrets=self.secrets,
            max_workers=max_workers
        )
        self.logger = get_logger(__name__)

    def plan(self, prune: bool = False) -> Plan:
        """Plan convergence of recorded state onto the desired state."""
        # Validate before the store is touched
        self.planner.validate(self.config.desired)
        return self.planner.plan(self.config.desired, self.store.all(), prune=prune)

    def plan_destroy(self) -> Plan:
        """Plan deletion of every declared resource that exists."""
        self.planner.validate(self.config.desired)
        return self.planner.plan_destroy(self.config.desired, self.store.all())

    def apply(
        self,
        plan: Optional[Plan] = None,
        prune: bool = False,
        cancel_event: Optional[threading.Event] = None
    ) -> ApplyReport:
        """Apply a plan, planning first if none is given."""
        if plan is None:
            plan = self.plan(prune=prune)

        if not plan.has_changes():
            self.logger.info("No changes to apply")

        return self.executor.apply(plan, self.provider, self.store, cancel_event=cancel_event)

    def destroy(
        self,
        plan: Optional[Plan] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApplyReport:
        """Delete every declared resource, dependents first."""
        if plan is None:
            plan = self.plan_destroy()
        return self.executor.apply(plan, self.provider, self.store, cancel_event=cancel_event)
