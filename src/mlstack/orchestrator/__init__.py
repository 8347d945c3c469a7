"""Orchestrator module for planning and execution."""

from mlstack.orchestrator.dependency_graph import DependencyGraph, DependencyNode
from mlstack.orchestrator.planner import Action, Operation, Plan, Planner
from mlstack.orchestrator.references import ReferenceResolver
from mlstack.orchestrator.executor import (
    ApplyReport,
    ApplyStatus,
    ExecutionStatus,
    Executor,
    ResourceResult,
)
from mlstack.orchestrator.orchestrator import Orchestrator

__all__ = [
    # Dependency graph
    'DependencyGraph',
    'DependencyNode',

    # Planning
    'Action',
    'Operation',
    'Plan',
    'Planner',

    # Execution
    'ApplyReport',
    'ApplyStatus',
    'ExecutionStatus',
    'Executor',
    'ReferenceResolver',
    'ResourceResult',

    # Main orchestrator
    'Orchestrator',
]
