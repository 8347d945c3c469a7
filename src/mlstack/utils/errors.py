"""Error handling framework for provisioning operations."""

import re
from typing import Optional, Dict, Any, List
from enum import Enum, IntEnum
from dataclasses import dataclass
from mlstack.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during provisioning."""
    CONFIGURATION = "configuration"
    SPEC = "spec"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    STATE = "state"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Invocation cannot continue
    ERROR = "error"  # Resource failed, already-applied resources are kept
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


class ExitCode(IntEnum):
    """Process exit codes, one per error class."""
    SUCCESS = 0
    CONFIGURATION = 2
    SPEC = 3
    TRANSIENT = 4
    PERMANENT = 5
    STATE_STORE = 6
    CANCELLED = 7


@dataclass
class ErrorContext:
    """Context information for an error."""
    resource_id: Optional[str] = None
    resource_kind: Optional[str] = None
    operation: Optional[str] = None
    command: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class DeploymentError(Exception):
    """Base exception for provisioning errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize deployment error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    @property
    def resource_id(self) -> Optional[str]:
        return self.context.resource_id

    @property
    def error_class(self) -> str:
        """Name of the taxonomy class shown to users."""
        return type(self).__name__

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = []

        lines.append(f"{self.severity.value.upper()} [{self.error_class}]: {self.message}")

        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'class': self.error_class,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'resource_id': self.context.resource_id,
                'resource_kind': self.context.resource_kind,
                'operation': self.context.operation,
                'command': self.context.command,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ConfigurationError(DeploymentError):
    """Error in the desired state file, settings or secrets."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class SpecError(DeploymentError):
    """The desired state is malformed. Raised before any provider call."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.CRITICAL)
        super().__init__(message, category=ErrorCategory.SPEC, **kwargs)


class CycleError(SpecError):
    """depends_on edges form a cycle."""

    def __init__(self, cycle: List[str], **kwargs):
        self.cycle = list(cycle)
        kwargs.setdefault('context', ErrorContext(resource_id=self.cycle[0] if self.cycle else None))
        super().__init__(
            f"Circular dependency detected: {' -> '.join(self.cycle)}",
            suggestions=['Remove one of the depends_on edges in the cycle'],
            **kwargs
        )


class UnknownDependencyError(SpecError):
    """A resource depends on or references an id that is not declared."""

    def __init__(self, resource_id: str, dependency_id: str, **kwargs):
        self.dependency_id = dependency_id
        kwargs.setdefault('context', ErrorContext(resource_id=resource_id))
        super().__init__(
            f"Resource '{resource_id}' depends on '{dependency_id}' which does not exist",
            **kwargs
        )


class DuplicateIdError(SpecError):
    """Two resources share the same id."""

    def __init__(self, resource_id: str, **kwargs):
        kwargs.setdefault('context', ErrorContext(resource_id=resource_id))
        super().__init__(f"Duplicate resource id: '{resource_id}'", **kwargs)


class AttributeValidationError(SpecError):
    """Resource attributes do not satisfy the schema of their kind."""
    pass


class ProviderError(DeploymentError):
    """Error returned by a resource provider."""

    transient = False

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.TRANSIENT if self.transient else ErrorCategory.PERMANENT,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class TransientProviderError(ProviderError):
    """Rate limit, timeout or temporary unavailability. Retried."""

    transient = True


class PermanentProviderError(ProviderError):
    """Invalid attributes, permission denied, quota exceeded. Never retried."""

    transient = False


class StateStoreError(DeploymentError):
    """Persisted state cannot be read or written. Fatal for the invocation."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class StateLockError(StateStoreError):
    """The state file writer lock could not be acquired."""
    pass


def exit_code_for(error: Exception) -> ExitCode:
    """Map an exception to the process exit code of its class."""
    if isinstance(error, ConfigurationError):
        return ExitCode.CONFIGURATION
    if isinstance(error, SpecError):
        return ExitCode.SPEC
    if isinstance(error, TransientProviderError):
        return ExitCode.TRANSIENT
    if isinstance(error, ProviderError):
        return ExitCode.PERMANENT
    if isinstance(error, StateStoreError):
        return ExitCode.STATE_STORE
    return ExitCode.PERMANENT


class ErrorHandler:
    """Classifies provider CLI failures into transient and permanent errors."""

    # Ordered: the first matching pattern wins
    PROVIDER_ERROR_MAPPING = [
        # Quota errors also carry RESOURCE_EXHAUSTED and must stay permanent
        ('quota', PermanentProviderError, 'Quota exceeded', [
            'Request a quota increase or free unused resources',
        ]),
        # Transient
        ('resource_exhausted', TransientProviderError, 'Provider rate limit hit', [
            'Retry later; exponential backoff is already applied',
        ]),
        ('rate limit', TransientProviderError, 'Provider rate limit hit', [
            'Retry later; exponential backoff is already applied',
        ]),
        ('too many requests', TransientProviderError, 'Provider rate limit hit', [
            'Retry later; exponential backoff is already applied',
        ]),
        ('operation in progress', TransientProviderError, 'Another operation is running on the resource', [
            'Wait for the pending operation to finish and rerun apply',
        ]),
        ('deadline exceeded', TransientProviderError, 'Request timed out', [
            'Check network connectivity to the control plane',
        ]),
        ('timed out', TransientProviderError, 'Request timed out', [
            'Check network connectivity to the control plane',
        ]),
        ('unavailable', TransientProviderError, 'Control plane temporarily unavailable', [
            'Wait a few moments and rerun apply',
        ]),
        ('bad gateway', TransientProviderError, 'Control plane gateway error', [
            'Wait a few moments and rerun apply',
        ]),
        ('gateway timeout', TransientProviderError, 'Control plane gateway timed out', [
            'Wait a few moments and rerun apply',
        ]),
        ('internal error', TransientProviderError, 'Control plane internal error', [
            'Wait a few moments and rerun apply',
        ]),
        ('try again', TransientProviderError, 'Control plane asked to retry', [
            'Wait a few moments and rerun apply',
        ]),
        ('connection reset', TransientProviderError, 'Connection to control plane dropped', [
            'Check network connectivity to the control plane',
        ]),
        # Permanent
        ('permission', PermanentProviderError, 'Permission denied', [
            'Check the IAM roles of the active gcloud account',
            'Verify with: gcloud auth list',
        ]),
        ('forbidden', PermanentProviderError, 'Permission denied', [
            'Check the IAM roles of the active gcloud account',
        ]),
        ('not authenticated', PermanentProviderError, 'Not authenticated', [
            'Run: gcloud auth login',
        ]),
        ('invalid', PermanentProviderError, 'Invalid attribute value', [
            'Review the attributes of the resource in the desired state file',
        ]),
        ('already exists', PermanentProviderError, 'Resource already exists outside of recorded state', [
            'Rerun apply; existing resources are adopted on create',
        ]),
    ]

    # Retryable HTTP status embedded in provider error text, e.g.
    # "HTTPError 502", "http 503", "code=429" or "[504]"
    TRANSIENT_STATUS_PATTERN = re.compile(r'(?:http(?:error)?\s*|code=|\[)(429|5\d\d)\b', re.IGNORECASE)

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def classify(
        self,
        output: str,
        context: Optional[ErrorContext] = None
    ) -> ProviderError:
        """Convert provider error output into a typed ProviderError.

        Args:
            output: Error text from the provider (stderr)
            context: Where the error occurred

        Returns:
            TransientProviderError or PermanentProviderError
        """
        context = context or ErrorContext()
        excerpt = self._excerpt(output)
        lowered = output.lower()

        for pattern, error_cls, message, suggestions in self.PROVIDER_ERROR_MAPPING:
            if pattern in lowered:
                return error_cls(
                    f"{message}: {excerpt}",
                    context=context,
                    suggestions=list(suggestions)
                )

        status = self.TRANSIENT_STATUS_PATTERN.search(output)
        if status:
            return TransientProviderError(
                f"Provider returned HTTP {status.group(1)}: {excerpt}",
                context=context,
                suggestions=['Wait a few moments and rerun apply']
            )

        return PermanentProviderError(
            f"Provider error: {excerpt}",
            context=context,
            suggestions=['Check logs for more details']
        )

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> DeploymentError:
        """Wrap an arbitrary exception into the error taxonomy.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            DeploymentError with categorization
        """
        context = context or ErrorContext()

        if isinstance(error, DeploymentError):
            if error.context.resource_id is None:
                error.context.resource_id = context.resource_id
            if error.context.operation is None:
                error.context.operation = context.operation
            return error

        if isinstance(error, (ConnectionError, TimeoutError)):
            return TransientProviderError(
                f"Network error: {str(error)}",
                context=context,
                cause=error,
                suggestions=['Check network connectivity to the control plane']
            )

        return PermanentProviderError(
            f"Unexpected error: {type(error).__name__}: {str(error)}",
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def log_error(self, error: DeploymentError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        self.logger.debug(f"Error details: {error.to_dict()}")

    @staticmethod
    def _excerpt(output: str, limit: int = 300) -> str:
        """Last non-empty lines of provider output, trimmed to limit."""
        lines = [line.strip() for line in output.strip().splitlines() if line.strip()]
        text = " ".join(lines[-3:]) if lines else "no error output"
        if len(text) > limit:
            text = text[:limit - 3] + "..."
        return text


# Global error handler instance
error_handler = ErrorHandler()
