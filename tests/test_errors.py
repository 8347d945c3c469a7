"""Tests for the error taxonomy and provider output classification."""

import pytest

from mlstack.utils.errors import (
    ConfigurationError,
    CycleError,
    DuplicateIdError,
    ErrorContext,
    ErrorHandler,
    ExitCode,
    PermanentProviderError,
    SpecError,
    StateLockError,
    TransientProviderError,
    UnknownDependencyError,
    exit_code_for,
)


@pytest.fixture
def handler():
    return ErrorHandler()


class TestClassify:
    """Tests for stderr classification."""

    @pytest.mark.parametrize("output", [
        "ERROR: (gcloud.sql.instances.create) RESOURCE_EXHAUSTED: Too many requests",
        "ERROR: Rate limit exceeded for operation",
        "ERROR: (gcloud.run.deploy) Service Unavailable",
        "ERROR: Operation in progress for resource",
        "ERROR: HTTP 503 from server",
        "ERROR: deadline exceeded",
        "ERROR: (gcloud.sql.instances.create) HTTPError 502: Bad Gateway",
        "ERROR: (gcloud.run.deploy) HTTPError 504: Gateway Timeout",
        "ERROR: (gcloud.sql.operations.wait) HTTPError 500",
        "ERROR: request failed with code=429",
    ])
    def test_transient(self, handler, output):
        assert isinstance(handler.classify(output), TransientProviderError)

    @pytest.mark.parametrize("output", [
        "ERROR: (gcloud.sql.instances.create) Quota exceeded: RESOURCE_EXHAUSTED",
        "ERROR: (gcloud.storage.buckets.create) Permission denied on project",
        "ERROR: HTTPError 403: Forbidden",
        "ERROR: Invalid value for field 'tier'",
        "ERROR: something nobody anticipated",
    ])
    def test_permanent(self, handler, output):
        assert isinstance(handler.classify(output), PermanentProviderError)

    def test_keeps_context_and_suggestions(self, handler):
        context = ErrorContext(resource_id="db", operation="create")

        error = handler.classify("ERROR: Permission denied", context)

        assert error.resource_id == "db"
        assert error.suggestions
        assert "Permission denied" in error.message

    def test_empty_output(self, handler):
        error = handler.classify("")
        assert "no error output" in error.message


class TestHandleException:
    """Tests for wrapping arbitrary exceptions."""

    def test_deployment_error_gets_context(self, handler):
        error = PermanentProviderError("bad")

        wrapped = handler.handle_exception(error, ErrorContext(resource_id="a", operation="create"))

        assert wrapped is error
        assert wrapped.resource_id == "a"
        assert wrapped.context.operation == "create"

    def test_network_errors_are_transient(self, handler):
        wrapped = handler.handle_exception(ConnectionError("reset"))
        assert isinstance(wrapped, TransientProviderError)
        assert isinstance(wrapped.cause, ConnectionError)

    def test_unknown_errors_are_permanent(self, handler):
        wrapped = handler.handle_exception(ValueError("boom"))
        assert isinstance(wrapped, PermanentProviderError)


class TestExitCodes:
    """Tests for the exit code of each error class."""

    @pytest.mark.parametrize("error, code", [
        (ConfigurationError("missing"), ExitCode.CONFIGURATION),
        (CycleError(["a", "b", "a"]), ExitCode.SPEC),
        (UnknownDependencyError("a", "b"), ExitCode.SPEC),
        (DuplicateIdError("a"), ExitCode.SPEC),
        (TransientProviderError("slow"), ExitCode.TRANSIENT),
        (PermanentProviderError("denied"), ExitCode.PERMANENT),
        (StateLockError("locked"), ExitCode.STATE_STORE),
    ])
    def test_exit_code_for(self, error, code):
        assert exit_code_for(error) == code

    def test_codes_are_distinct(self):
        assert len({code.value for code in ExitCode}) == len(ExitCode)


class TestUserMessage:
    """Tests for error rendering."""

    def test_cycle_message_shows_path(self):
        error = CycleError(["x", "y", "x"])
        assert "x -> y -> x" in error.to_user_message()
        assert error.resource_id == "x"

    def test_to_dict(self):
        error = SpecError("bad", context=ErrorContext(resource_id="a"))

        data = error.to_dict()

        assert data["class"] == "SpecError"
        assert data["category"] == "spec"
        assert data["context"]["resource_id"] == "a"
