"""
Service graph inspection: layering, DOT export and tree views.
"""

from typing import Collection, Dict, Iterable, List, Optional, Set, Tuple

from .declarations import Declaration
from .validator import check


def partition(
    declarations: Iterable[Declaration],
    available: Collection[str],
) -> Tuple[List[Declaration], List[Declaration]]:
    """
    Split declarations into those whose needs are all available and the rest.

    Args:
        declarations: Declarations still to acquire
        available: Names already acquired

    Returns:
        Tuple of (ready, pending), each in input order
    """
    ready: List[Declaration] = []
    pending: List[Declaration] = []
    for declaration in declarations:
        if all(need in available for need in declaration.needs):
            ready.append(declaration)
        else:
            pending.append(declaration)
    return ready, pending


class ServiceGraph:
    """
    Read-only view over a list of declarations.

    Nodes are declared services; edges point from a service to the services
    it needs. Names that are needed but never declared still show up in
    exports, marked as missing.
    """

    def __init__(self, declarations: Iterable[Declaration]):
        self._declarations: List[Declaration] = list(declarations)
        self._adjacency: Dict[str, Tuple[str, ...]] = {}
        for declaration in self._declarations:
            self._adjacency.setdefault(declaration.name, declaration.needs)

    @property
    def declarations(self) -> List[Declaration]:
        return list(self._declarations)

    def layers(self) -> List[List[str]]:
        """
        Acquisition layers, in the order the scheduler acquires them.

        Returns:
            List of layers, each the names acquired concurrently

        Raises:
            FlawedGraphFault: If the graph is not well-formed
        """
        check(self._declarations)

        layers: List[List[str]] = []
        available: Set[str] = set()
        remaining = self._declarations
        while remaining:
            ready, remaining = partition(remaining, available)
            layers.append([d.name for d in ready])
            available.update(d.name for d in ready)
        return layers

    def roots(self) -> List[str]:
        """Services with no needs."""
        return [name for name, needs in self._adjacency.items() if not needs]

    def dependents(self, name: str) -> List[str]:
        """Services that directly need the given one."""
        return [other for other, needs in self._adjacency.items() if name in needs]

    def to_dot(self) -> str:
        """
        Export graph as Graphviz DOT format.

        Returns:
            DOT string
        """
        lines = ["digraph services {"]
        lines.append("  rankdir=LR;")
        lines.append("  node [shape=box, style=rounded];")

        for name in self._adjacency:
            lines.append(f'  "{name}";')

        missing = sorted({
            need
            for needs in self._adjacency.values()
            for need in needs
            if need not in self._adjacency
        })
        for name in missing:
            lines.append(f'  "{name}" [style=dashed, label="{name}\\n(missing)"];')

        for name, needs in self._adjacency.items():
            for need in needs:
                lines.append(f'  "{name}" -> "{need}";')

        lines.append("}")
        return "\n".join(lines)

    def tree_view(self, root: Optional[str] = None) -> str:
        """
        Tree view of needs.

        Args:
            root: Optional root service (if None, show every service nothing depends on)

        Returns:
            Tree view as string
        """
        if root:
            return self._tree_view_recursive(root, "", set())

        needed = {need for needs in self._adjacency.values() for need in needs}
        tops = [name for name in self._adjacency if name not in needed]

        return "\n".join(self._tree_view_recursive(name, "", set()) for name in tops)

    def _tree_view_recursive(self, name: str, prefix: str, visited: Set[str]) -> str:
        if name in visited:
            return f"{prefix}├── {name} (circular)"

        if name not in self._adjacency:
            return f"{prefix}├── {name} (missing)"

        visited.add(name)

        lines = [f"{prefix}├── {name}"]
        needs = self._adjacency[name]
        for i, need in enumerate(needs):
            is_last = i == len(needs) - 1
            new_prefix = prefix + ("    " if is_last else "│   ")
            lines.append(self._tree_view_recursive(need, new_prefix, visited.copy()))

        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._adjacency)

    def __contains__(self, name: str) -> bool:
        return name in self._adjacency

    def __repr__(self) -> str:
        return f"ServiceGraph({len(self._adjacency)} services)"


def plan_layers(declarations: Iterable[Declaration]) -> List[List[str]]:
    """Names per acquisition layer, after validating the graph."""
    return ServiceGraph(declarations).layers()
