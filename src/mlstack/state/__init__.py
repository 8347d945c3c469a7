"""State management module for tracking applied resources."""

from .manager import StateStore, open_state_store
from .models import (
    DesiredState,
    ObservedRecord,
    ResourceKind,
    ResourceSpec,
    StateDocument,
    compute_spec_hash,
)

__all__ = [
    "DesiredState",
    "ObservedRecord",
    "ResourceKind",
    "ResourceSpec",
    "StateDocument",
    "StateStore",
    "compute_spec_hash",
    "open_state_store",
]
