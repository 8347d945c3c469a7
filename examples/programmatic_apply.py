"""Example of planning and applying a desired state programmatically."""

import sys

from mlstack.config.parser import load_desired_state
from mlstack.config.secrets import SecretStore
from mlstack.config.settings import get_settings
from mlstack.orchestrator import ApplyStatus, Orchestrator
from mlstack.provisioners import create_provider
from mlstack.state.manager import open_state_store
from mlstack.utils.errors import DeploymentError, exit_code_for
from mlstack.utils.logging import setup_logging


def main(desired_file: str = "examples/mlflow-gcp.yaml", state: str = ".mlstack/state.json"):
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)

    try:
        config = load_desired_state(desired_file)
        orchestrator = Orchestrator(
            config=config,
            store=open_state_store(state),
            provider=create_provider(settings),
            secrets=SecretStore.from_environment(config.secret_names()),
        )

        plan = orchestrator.plan()
        for action in plan.actions:
            print(f"{action.operation.value:>8}  {action.resource_id}")

        if not plan.has_changes():
            print("Nothing to do")
            return 0

        report = orchestrator.apply(plan)
        if report.status != ApplyStatus.SUCCESS:
            print(f"Stopped at {report.failed_resource_id}; not applied: {report.not_applied_ids()}")
            return exit_code_for(report.error) if report.error else 1

        service = report.get("mlflow-server")
        print(f"Service handle: {service.provider_handle if service else 'n/a'}")
        return 0

    except DeploymentError as e:
        print(e.to_user_message(), file=sys.stderr)
        return exit_code_for(e)


if __name__ == "__main__":
    sys.exit(main(*sys.argv[1:]))
