"""Dependency graph over resource IDs for apply and delete ordering."""

import heapq
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set

from mlstack.state.models import ResourceSpec
from mlstack.utils.errors import CycleError, UnknownDependencyError


@dataclass
class DependencyNode:
    """Node in the dependency graph."""

    resource_id: str
    dependencies: Set[str]  # IDs this node depends on
    dependents: Set[str] = field(default_factory=set)  # IDs that depend on this node


class DependencyGraph:
    """Directed graph of depends_on edges.

    Ordering is deterministic: among resources whose dependencies are all
    satisfied, the lexicographically smallest ID comes first.
    """

    def __init__(self):
        """Initialize empty dependency graph."""
        self.nodes: Dict[str, DependencyNode] = {}
        self._adjacency_list: Dict[str, Set[str]] = defaultdict(set)

    @classmethod
    def from_specs(cls, specs: Iterable[ResourceSpec]) -> "DependencyGraph":
        graph = cls()
        for spec in specs:
            graph.add_node(spec.id, spec.depends_on)
        return graph

    @classmethod
    def from_edges(cls, edges: Mapping[str, Iterable[str]]) -> "DependencyGraph":
        """Build from an id -> dependency ids mapping."""
        graph = cls()
        for resource_id, dependencies in edges.items():
            graph.add_node(resource_id, dependencies)
        return graph

    def add_node(self, resource_id: str, dependencies: Iterable[str]) -> None:
        """Add a node and its outgoing edges.

        Args:
            resource_id: ID of the resource
            dependencies: IDs the resource depends on
        """
        node = DependencyNode(
            resource_id=resource_id,
            dependencies=set(dependencies),
            dependents=set(self._adjacency_list.get(resource_id, set()))
        )
        self.nodes[resource_id] = node
        for dep_id in node.dependencies:
            self._adjacency_list[dep_id].add(resource_id)
            if dep_id in self.nodes:
                self.nodes[dep_id].dependents.add(resource_id)

    def get_dependencies(self, resource_id: str) -> Set[str]:
        """Direct dependencies of a resource."""
        if resource_id not in self.nodes:
            return set()
        return self.nodes[resource_id].dependencies.copy()

    def get_dependents(self, resource_id: str) -> Set[str]:
        """Direct dependents of a resource."""
        return set(self._adjacency_list.get(resource_id, set()))

    def get_all_dependencies(self, resource_id: str) -> Set[str]:
        """All transitive dependencies of a resource.

        Args:
            resource_id: ID of resource

        Returns:
            Set of all resource IDs in the dependency chain
        """
        visited = set()
        queue = deque([resource_id])

        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue
            visited.add(current_id)
            if current_id in self.nodes:
                for dep_id in self.nodes[current_id].dependencies:
                    if dep_id not in visited:
                        queue.append(dep_id)

        visited.discard(resource_id)
        return visited

    def get_all_dependents(self, resource_id: str) -> Set[str]:
        """All transitive dependents of a resource."""
        visited = set()
        queue = deque([resource_id])

        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue
            visited.add(current_id)
            for dependent_id in self._adjacency_list.get(current_id, set()):
                if dependent_id not in visited:
                    queue.append(dependent_id)

        visited.discard(resource_id)
        return visited

    def detect_circular_dependencies(self) -> Optional[List[str]]:
        """Detect circular dependencies in the graph.

        Returns:
            Cycle path with the first ID repeated at the end, or None
        """
        # White (0): unvisited, Gray (1): visiting, Black (2): visited
        color = {node_id: 0 for node_id in self.nodes}
        path: List[str] = []

        def dfs(node_id: str) -> Optional[List[str]]:
            color[node_id] = 1
            path.append(node_id)

            for dep_id in sorted(self.nodes[node_id].dependencies):
                if dep_id not in self.nodes:
                    continue
                if color[dep_id] == 1:
                    # Back edge; path holds dep_id ... node_id
                    start = path.index(dep_id)
                    return path[start:] + [dep_id]
                if color[dep_id] == 0:
                    cycle = dfs(dep_id)
                    if cycle:
                        return cycle

            path.pop()
            color[node_id] = 2
            return None

        for node_id in sorted(self.nodes):
            if color[node_id] == 0:
                cycle = dfs(node_id)
                if cycle:
                    return cycle

        return None

    def validate(self) -> None:
        """Validate the dependency graph.

        Raises:
            UnknownDependencyError: If a node depends on an ID not in the graph
            CycleError: If the edges form a cycle
        """
        for node_id in sorted(self.nodes):
            for dep_id in sorted(self.nodes[node_id].dependencies):
                if dep_id not in self.nodes:
                    raise UnknownDependencyError(node_id, dep_id)

        cycle = self.detect_circular_dependencies()
        if cycle:
            raise CycleError(cycle)

    def topological_sort(self) -> List[str]:
        """Deterministic topological order, dependencies before dependents.

        Raises:
            UnknownDependencyError: If a node depends on an ID not in the graph
            CycleError: If the edges form a cycle
        """
        self.validate()

        # Kahn's algorithm with a min-heap as the ready queue
        in_degree = {node_id: len(node.dependencies) for node_id, node in self.nodes.items()}
        ready = [node_id for node_id, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        result = []

        while ready:
            node_id = heapq.heappop(ready)
            result.append(node_id)

            for dependent_id in self._adjacency_list.get(node_id, set()):
                in_degree[dependent_id] -= 1
                if in_degree[dependent_id] == 0:
                    heapq.heappush(ready, dependent_id)

        if len(result) != len(self.nodes):
            remaining = sorted(set(self.nodes) - set(result))
            raise CycleError(remaining)

        return result

    def get_destruction_order(self) -> List[str]:
        """Dependents before dependencies."""
        return list(reversed(self.topological_sort()))

    def has_resource(self, resource_id: str) -> bool:
        return resource_id in self.nodes

    def size(self) -> int:
        return len(self.nodes)
