"""
Dependency graph validation.

Proves a list of declarations is well-formed before anything is acquired:
- every name has exactly one provider
- every needed name has a provider
- the needs graph has no cycles

All flaws found are reported together in a single FlawedGraphFault.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Set, Tuple, Union

from .declarations import Declaration
from .faults import FlawedGraphFault


# ============================================================================
# Flaws
# ============================================================================

@dataclass(frozen=True)
class DuplicateProvider:
    """Two or more declarations share a name."""

    name: str
    providers: Tuple[Tuple[str, ...], ...]

    def render(self) -> str:
        providers = "; and\n".join(
            f"    - One depending on [{'; '.join(needs)}]" for needs in self.providers
        )
        return f"[{self.name}] has {len(self.providers)} providers:\n{providers}"


@dataclass(frozen=True)
class MissingProvider:
    """A declaration needs a name nothing provides."""

    name: str
    need: str

    def render(self) -> str:
        return f"[{self.name}] needs [{self.need}], which has no provider"


@dataclass(frozen=True)
class CircularDependency:
    """A declaration depends on itself, directly or transitively."""

    name: str
    cycle: Tuple[str, ...]

    def render(self) -> str:
        return f"[{self.name}] circles around via [{' -> '.join(self.cycle)}]"


Flaw = Union[DuplicateProvider, MissingProvider, CircularDependency]


# ============================================================================
# Traversal
# ============================================================================

@dataclass
class _Traversal:
    """Depth-first traversal state, threaded explicitly through _visit."""

    path: List[str] = field(default_factory=list)
    checked: Set[str] = field(default_factory=set)
    flaws: List[Flaw] = field(default_factory=list)


def index_declarations(declarations: Iterable[Declaration]) -> Dict[str, List[Declaration]]:
    """Group declarations by name, in order of first appearance."""
    indexed: Dict[str, List[Declaration]] = {}
    for declaration in declarations:
        indexed.setdefault(declaration.name, []).append(declaration)
    return indexed


def find_duplicates(indexed: Dict[str, List[Declaration]]) -> List[DuplicateProvider]:
    """Every name declared more than once."""
    return [
        DuplicateProvider(name, tuple(d.needs for d in providers))
        for name, providers in indexed.items()
        if len(providers) > 1
    ]


def _enter(state: _Traversal, declaration: Declaration) -> bool:
    """Push declaration onto the path, or record why it is not visited."""
    name = declaration.name

    if name in state.checked:
        return False

    if name in state.path:
        cycle = tuple(state.path[state.path.index(name):]) + (name,)
        state.flaws.append(CircularDependency(name, cycle))
        state.checked.add(name)
        return False

    state.path.append(name)
    return True


def _visit(
    indexed: Dict[str, List[Declaration]],
    state: _Traversal,
    declaration: Declaration,
) -> None:
    # Depth-first over an explicit stack of (declaration, remaining needs)
    if not _enter(state, declaration):
        return

    stack: List[Tuple[Declaration, Iterator[str]]] = [(declaration, iter(declaration.needs))]
    while stack:
        current, needs = stack[-1]
        need = next(needs, None)

        if need is None:
            stack.pop()
            state.path.pop()
            state.checked.add(current.name)
            continue

        providers = indexed.get(need)
        if not providers:
            state.flaws.append(MissingProvider(current.name, need))
            state.checked.add(need)
            continue

        if _enter(state, providers[0]):
            stack.append((providers[0], iter(providers[0].needs)))


def find_flaws(declarations: Iterable[Declaration]) -> List[Flaw]:
    """
    Collect every flaw in the declaration list.

    Duplicates are reported on their own: the traversal needs one provider
    per name, so it only runs on a graph without duplicates. A detected
    cycle stops exploration of that branch past the repeated name.

    Returns:
        Flaws in discovery order (empty for a well-formed graph)
    """
    declarations = list(declarations)
    indexed = index_declarations(declarations)

    duplicates = find_duplicates(indexed)
    if duplicates:
        return list(duplicates)

    state = _Traversal()
    for declaration in declarations:
        _visit(indexed, state, declaration)
    return state.flaws


def check(declarations: Iterable[Declaration]) -> None:
    """
    Validate the dependency graph.

    Raises:
        FlawedGraphFault: Listing every flaw found
    """
    flaws = find_flaws(declarations)
    if flaws:
        raise FlawedGraphFault(flaws)
