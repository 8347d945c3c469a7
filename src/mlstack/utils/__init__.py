"""Utility modules for logging, error taxonomy and retries."""

from mlstack.utils.retry import RetryStrategy
from mlstack.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ExitCode,
    DeploymentError,
    ConfigurationError,
    SpecError,
    CycleError,
    UnknownDependencyError,
    DuplicateIdError,
    AttributeValidationError,
    ProviderError,
    TransientProviderError,
    PermanentProviderError,
    StateStoreError,
    StateLockError,
    ErrorHandler,
    error_handler,
    exit_code_for
)
from mlstack.utils.logging import get_logger, setup_logging

__all__ = [
    # Retry
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ExitCode',
    'DeploymentError',
    'ConfigurationError',
    'SpecError',
    'CycleError',
    'UnknownDependencyError',
    'DuplicateIdError',
    'AttributeValidationError',
    'ProviderError',
    'TransientProviderError',
    'PermanentProviderError',
    'StateStoreError',
    'StateLockError',
    'ErrorHandler',
    'error_handler',
    'exit_code_for',

    # Logging
    'get_logger',
    'setup_logging',
]
