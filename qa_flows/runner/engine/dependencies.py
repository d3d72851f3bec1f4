"""
Dependency validation and ordering for flows and reusable actions.

Items are described by a plain mapping `{id: [dependency ids]}`; the validator
never loads definitions itself.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping

from .errors import CircularDependencyError
from .types import DependencyNode, DependencyValidation

logger = logging.getLogger("qa_flows.runner.dependencies")

DEFAULT_MAX_DEPTH = 5


def format_circular_paths(paths: list[list[str]]) -> str:
    return "; ".join(" → ".join(path) for path in paths)


class DependencyValidator:
    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.max_depth = max(1, int(max_depth))

    def validate(
        self,
        item_id: str,
        dependencies: list[str],
        all_items: Mapping[str, list[str]],
        kind: str = "flow",
    ) -> DependencyValidation:
        """Check existence, self-reference, cycles, depth and redundancy.

        `all_items` may or may not already contain `item_id`; the candidate
        `dependencies` always win so unsaved edits can be validated.
        """
        errors: list[str] = []
        warnings: list[str] = []

        for dep in dependencies:
            if dep not in all_items:
                errors.append(f'{kind} "{dep}" does not exist')

        if item_id in dependencies:
            errors.append(f"{kind} cannot depend on itself")

        graph = dict(all_items)
        graph[item_id] = list(dependencies)

        circular = self.detect_circular_dependencies(item_id, dependencies, graph)
        if circular:
            errors.append(f"Circular dependency detected: {format_circular_paths(circular)}")

        if circular is None and dependencies:
            depth = self.calculate_depth(item_id, graph)
            if depth > self.max_depth:
                warnings.append(f"Dependency depth ({depth}) exceeds recommended maximum ({self.max_depth})")

        redundant = self.find_redundant_dependencies(dependencies, graph)
        if redundant:
            warnings.append(
                "Redundant dependencies detected (already covered by transitive dependencies): "
                + ", ".join(redundant)
            )

        if errors:
            logger.debug("dependency validation failed for %s %s: %s", kind, item_id, errors)
        return DependencyValidation(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            circular_paths=circular,
        )

    def detect_circular_dependencies(
        self,
        item_id: str,
        dependencies: list[str],
        all_items: Mapping[str, list[str]],
    ) -> list[list[str]] | None:
        """Depth-first search from `item_id`; returns the first cycle found.

        The cycle is reported from the revisited node forward, so its first and
        last elements are the same id.
        """
        visited: set[str] = set()
        on_stack: set[str] = set()
        path: list[str] = []

        def neighbours(node: str) -> list[str]:
            if node == item_id:
                return list(dependencies)
            return list(all_items.get(node) or [])

        def dfs(node: str) -> list[str] | None:
            visited.add(node)
            on_stack.add(node)
            path.append(node)
            for dep in neighbours(node):
                if dep in on_stack:
                    start = path.index(dep)
                    return path[start:] + [dep]
                if dep not in visited:
                    found = dfs(dep)
                    if found:
                        return found
            on_stack.discard(node)
            path.pop()
            return None

        cycle = dfs(item_id)
        return [cycle] if cycle else None

    def calculate_depth(self, item_id: str, all_items: Mapping[str, list[str]]) -> int:
        """Longest dependency chain below `item_id` (0 for a leaf)."""
        visited: set[str] = set()

        def dfs(node: str) -> int:
            if node in visited:
                return 0
            visited.add(node)
            deps = all_items.get(node) or []
            if not deps:
                return 0
            return 1 + max(dfs(dep) for dep in deps)

        return dfs(item_id)

    def find_redundant_dependencies(self, dependencies: list[str], all_items: Mapping[str, list[str]]) -> list[str]:
        """Direct dependencies that another direct dependency already pulls in."""
        redundant: list[str] = []
        for dep in dependencies:
            for other in dependencies:
                if other == dep:
                    continue
                if dep in self.get_all_dependencies(other, all_items):
                    redundant.append(dep)
                    break
        return redundant

    def build_graph(self, items: Mapping[str, list[str]], kind: str = "flow") -> list[DependencyNode]:
        nodes: dict[str, DependencyNode] = {}
        for item_id, deps in items.items():
            nodes[item_id] = DependencyNode(id=item_id, name=item_id, type=kind, dependencies=list(deps or []))
        for item_id, deps in items.items():
            for dep in deps or []:
                node = nodes.get(dep)
                if node is not None and item_id not in node.dependents:
                    node.dependents.append(item_id)
        return list(nodes.values())

    def get_execution_order(self, nodes: list[DependencyNode]) -> list[str]:
        """Kahn's algorithm; ready nodes leave the queue in insertion order.

        Dependencies on ids that are not part of `nodes` are ignored here;
        `validate()` reports them.
        """
        known = {node.id for node in nodes}
        in_degree: dict[str, int] = {}
        dependents: dict[str, list[str]] = {node.id: [] for node in nodes}
        for node in nodes:
            deps = [d for d in dict.fromkeys(node.dependencies) if d in known]
            in_degree[node.id] = len(deps)
            for dep in deps:
                dependents[dep].append(node.id)

        queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
        order: list[str] = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for dependent in dependents[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(order) != len(nodes):
            remaining = [node.id for node in nodes if node.id not in set(order)]
            raise CircularDependencyError(
                "Cannot determine execution order: circular dependencies detected",
                errors=[f"Unresolved: {', '.join(remaining)}"],
                details={"remaining": remaining},
            )
        return order

    def get_all_dependencies(self, item_id: str, all_items: Mapping[str, list[str]]) -> list[str]:
        """Transitive closure of dependencies, in discovery order."""
        found: dict[str, None] = {}
        stack = list(reversed(all_items.get(item_id) or []))
        while stack:
            dep = stack.pop()
            if dep in found or dep == item_id:
                continue
            found[dep] = None
            stack.extend(reversed(all_items.get(dep) or []))
        return list(found)

    def get_all_dependents(self, item_id: str, nodes: Iterable[DependencyNode]) -> list[str]:
        """Everything that depends on `item_id`, directly or transitively."""
        by_id = {node.id: node for node in nodes}
        found: dict[str, None] = {}
        stack = list(reversed(by_id[item_id].dependents)) if item_id in by_id else []
        while stack:
            dependent = stack.pop()
            if dependent in found or dependent == item_id:
                continue
            found[dependent] = None
            node = by_id.get(dependent)
            if node is not None:
                stack.extend(reversed(node.dependents))
        return list(found)


__all__ = ["DEFAULT_MAX_DEPTH", "DependencyValidator", "format_circular_paths"]
