"""Tests for the command line interface."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from mlstack.cli.main import cli
from mlstack.config.settings import Settings
from mlstack.utils.errors import ExitCode, PermanentProviderError, TransientProviderError

STACK = """
project:
  name: test-project
retry:
  max_retries: 2
  base_delay: 0
  max_delay: 0
  jitter: false
resources:
  - id: a
    kind: StorageBucket
    attributes:
      name: bucket-a
      location: EU
  - id: b
    kind: StorageBucket
    depends_on: [a]
    attributes:
      name: bucket-b
      location: ${a.location}
"""

CYCLE = """
resources:
  - id: a
    kind: StorageBucket
    depends_on: [b]
    attributes: {name: bucket-a}
  - id: b
    kind: StorageBucket
    depends_on: [a]
    attributes: {name: bucket-b}
"""

WITH_SECRET = """
project:
  name: test-project
resources:
  - id: user
    kind: DatabaseUser
    attributes:
      name: mlflow
      instance: mlflow-db
      password: ${env:MLSTACK_TEST_USER_PASSWORD}
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, provider):
    """Fake provider and quiet settings for every command."""
    settings = Settings(log_dir=str(tmp_path / "logs"))
    with patch("mlstack.cli.main.get_settings", return_value=settings), \
            patch("mlstack.cli.main.create_provider", return_value=provider), \
            patch("mlstack.cli.main.setup_logging"):
        yield


@pytest.fixture
def stack_file(tmp_path):
    path = tmp_path / "stack.yaml"
    path.write_text(STACK)
    return str(path)


@pytest.fixture
def state_file(tmp_path):
    return str(tmp_path / "state" / "state.json")


class TestPlanCommand:
    """Tests for the plan command."""

    def test_plan_shows_creates_without_provider_calls(self, runner, stack_file, state_file, cloud):
        result = runner.invoke(cli, ["plan", stack_file, "--state", state_file])

        assert result.exit_code == 0, result.output
        assert "2 to create" in result.output
        assert cloud.calls == []

    def test_cycle_exits_with_spec_code(self, runner, tmp_path, state_file, cloud):
        path = tmp_path / "cycle.yaml"
        path.write_text(CYCLE)

        result = runner.invoke(cli, ["plan", str(path), "--state", state_file])

        assert result.exit_code == ExitCode.SPEC
        assert "CycleError" in result.output
        assert cloud.calls == []

    def test_missing_desired_file(self, runner, tmp_path, state_file):
        result = runner.invoke(cli, ["plan", str(tmp_path / "absent.yaml"), "--state", state_file])

        assert result.exit_code == ExitCode.CONFIGURATION

    def test_missing_secret(self, runner, tmp_path, state_file, monkeypatch):
        monkeypatch.delenv("MLSTACK_TEST_USER_PASSWORD", raising=False)
        path = tmp_path / "secret.yaml"
        path.write_text(WITH_SECRET)

        result = runner.invoke(cli, ["plan", str(path), "--state", state_file])

        assert result.exit_code == ExitCode.CONFIGURATION
        assert "MLSTACK_TEST_USER_PASSWORD" in result.output

    def test_unsupported_state_backend(self, runner, stack_file):
        result = runner.invoke(cli, ["plan", stack_file, "--state", "s3://bucket/state.json"])

        assert result.exit_code == ExitCode.CONFIGURATION

    def test_corrupt_state(self, runner, stack_file, tmp_path):
        state = tmp_path / "broken.json"
        state.write_text("{oops")

        result = runner.invoke(cli, ["plan", stack_file, "--state", str(state)])

        assert result.exit_code == ExitCode.STATE_STORE


class TestApplyCommand:
    """Tests for the apply command."""

    def test_apply_then_nothing_to_do(self, runner, stack_file, state_file, cloud):
        result = runner.invoke(cli, ["apply", stack_file, "--state", state_file, "--yes"])

        assert result.exit_code == 0, result.output
        assert "Apply complete" in result.output
        assert cloud.resources["bucket-b"]["location"] == "EU"

        cloud.reset_calls()
        result = runner.invoke(cli, ["apply", stack_file, "--state", state_file, "--yes"])

        assert result.exit_code == 0
        assert "Nothing to do" in result.output
        assert cloud.mutations() == []

    def test_declined_confirmation(self, runner, stack_file, state_file, cloud):
        result = runner.invoke(cli, ["apply", stack_file, "--state", state_file], input="n\n")

        assert result.exit_code == 0
        assert "Apply aborted" in result.output
        assert cloud.mutations() == []

    def test_permanent_failure_exit_code(self, runner, stack_file, state_file, cloud):
        cloud.fail("create", "bucket-b", PermanentProviderError("quota exceeded"))

        result = runner.invoke(cli, ["apply", stack_file, "--state", state_file, "--yes"])

        assert result.exit_code == ExitCode.PERMANENT
        assert "PermanentProviderError" in result.output
        assert "bucket-a" in cloud.resources

    def test_transient_failure_exit_code(self, runner, stack_file, state_file, cloud):
        cloud.fail(
            "create", "bucket-a",
            TransientProviderError("unavailable"),
            TransientProviderError("unavailable"),
        )

        result = runner.invoke(cli, ["apply", stack_file, "--state", state_file, "--yes"])

        assert result.exit_code == ExitCode.TRANSIENT
        assert cloud.calls.count(("create", "bucket-a")) == 2

    def test_parallel_workers(self, runner, stack_file, state_file, cloud):
        result = runner.invoke(
            cli, ["apply", stack_file, "--state", state_file, "--yes", "--max-workers", "2"]
        )

        assert result.exit_code == 0, result.output
        assert set(cloud.resources) == {"bucket-a", "bucket-b"}


class TestDestroyAndStateCommands:
    """Tests for destroy and state."""

    def test_state_empty(self, runner, state_file):
        result = runner.invoke(cli, ["state", "--state", state_file])

        assert result.exit_code == 0
        assert "No resources recorded" in result.output

    def test_destroy_deletes_and_state_shows_it(self, runner, stack_file, state_file, cloud):
        runner.invoke(cli, ["apply", stack_file, "--state", state_file, "--yes"])

        result = runner.invoke(cli, ["destroy", stack_file, "--state", state_file, "--yes"])

        assert result.exit_code == 0, result.output
        assert cloud.resources == {}
        assert cloud.mutations()[-2:] == [("delete", "bucket-b"), ("delete", "bucket-a")]

        result = runner.invoke(cli, ["state", "--state", state_file])
        assert result.exit_code == 0
        assert "bucket-a" in result.output

    def test_destroy_with_nothing_applied(self, runner, stack_file, state_file):
        result = runner.invoke(cli, ["destroy", stack_file, "--state", state_file, "--yes"])

        assert result.exit_code == 0
        assert "Nothing to destroy" in result.output
