from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple, Union

# Pseudo-nodes marking where an invocation starts and where it completes
START = "__start__"
END = "__end__"
RESERVED_NAMES = frozenset({START, END})

PartialState = Optional[Mapping[str, Any]]
NodeFn = Callable[[Mapping[str, Any]], Union[PartialState, Awaitable[PartialState]]]
RouterFn = Callable[[Mapping[str, Any]], Any]


@dataclass(frozen=True)
class NodeSpec:
    """A named unit of work plus the state fields it declares it touches."""

    name: str
    fn: NodeFn
    reads: Tuple[str, ...] = ()
    writes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FixedEdge:
    """Unconditional transition taken every time ``source`` completes."""

    source: str
    target: str


@dataclass(frozen=True)
class ConditionalEdge:
    """Transition chosen by ``router(state)`` through a static label table."""

    source: str
    router: RouterFn
    table: Mapping[str, str]
    reads: Tuple[str, ...] = ()

    @property
    def targets(self) -> Tuple[str, ...]:
        return tuple(self.table.values())


EdgeSpec = Union[FixedEdge, ConditionalEdge]


def edge_targets(edge: EdgeSpec) -> Tuple[str, ...]:
    if isinstance(edge, FixedEdge):
        return (edge.target,)
    return edge.targets


# Compiled handles: name lookups are resolved to indices before any invocation
TERMINAL = -1


@dataclass(frozen=True)
class ResolvedFixed:
    target: int


@dataclass(frozen=True)
class ResolvedConditional:
    router: RouterFn
    table: Mapping[str, int]


ResolvedEdge = Union[ResolvedFixed, ResolvedConditional]


@dataclass(frozen=True)
class CompiledNode:
    index: int
    name: str
    fn: NodeFn
    edge: ResolvedEdge
    writes: Tuple[str, ...] = ()


__all__ = [
    "START",
    "END",
    "RESERVED_NAMES",
    "TERMINAL",
    "NodeFn",
    "RouterFn",
    "PartialState",
    "NodeSpec",
    "FixedEdge",
    "ConditionalEdge",
    "EdgeSpec",
    "edge_targets",
    "ResolvedFixed",
    "ResolvedConditional",
    "ResolvedEdge",
    "CompiledNode",
]
