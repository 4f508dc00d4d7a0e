from __future__ import annotations

from collections import deque
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from promptgraph.graph.edges import (
    END,
    RESERVED_NAMES,
    START,
    TERMINAL,
    CompiledNode,
    ConditionalEdge,
    EdgeSpec,
    FixedEdge,
    NodeFn,
    NodeSpec,
    ResolvedConditional,
    ResolvedEdge,
    ResolvedFixed,
    RouterFn,
    edge_targets,
)
from promptgraph.graph.errors import GraphValidationError
from promptgraph.graph.executor import DEFAULT_MAX_STEPS, CompiledWorkflow
from promptgraph.graph.state import StateSchema
from promptgraph.logging import get_logger

if TYPE_CHECKING:
    from promptgraph.config import Settings


class WorkflowGraph:
    """Mutable registry of nodes and edges, compiled into a runnable workflow.

    Registration methods never raise; structural mistakes are collected and
    reported together by ``compile()`` as a single ``GraphValidationError``.
    All registration methods return the graph so calls can be chained.
    """

    def __init__(self, schema: StateSchema, *, name: str = "workflow") -> None:
        self.schema = schema
        self.name = name
        self.logger = get_logger(__name__)
        self._nodes: Dict[str, NodeSpec] = {}
        self._edges: Dict[str, EdgeSpec] = {}
        self._entries: List[str] = []
        self._problems: List[str] = []

    def add_node(
        self,
        name: str,
        fn: NodeFn,
        *,
        reads: Iterable[str] = (),
        writes: Iterable[str] = (),
    ) -> "WorkflowGraph":
        if name in RESERVED_NAMES:
            self._problems.append(f"node name '{name}' is reserved")
        elif name in self._nodes:
            self._problems.append(f"node '{name}' declared twice")
        elif not callable(fn):
            self._problems.append(f"node '{name}' is not callable")
        else:
            self._nodes[name] = NodeSpec(
                name=name, fn=fn, reads=tuple(reads), writes=tuple(writes)
            )
        return self

    def add_edge(self, source: str, target: str) -> "WorkflowGraph":
        if source == START:
            self._entries.append(target)
        elif source == END:
            self._problems.append("END cannot have outgoing edges")
        elif source in self._edges:
            self._problems.append(f"node '{source}' has more than one outgoing edge")
        else:
            self._edges[source] = FixedEdge(source=source, target=target)
        return self

    def add_conditional_edge(
        self,
        source: str,
        router: RouterFn,
        table: Mapping[str, str],
        *,
        reads: Iterable[str] = (),
    ) -> "WorkflowGraph":
        if source == START:
            self._problems.append("the entry edge must be a fixed edge")
        elif source == END:
            self._problems.append("END cannot have outgoing edges")
        elif source in self._edges:
            self._problems.append(f"node '{source}' has more than one outgoing edge")
        elif not callable(router):
            self._problems.append(f"router after '{source}' is not callable")
        elif not table:
            self._problems.append(f"conditional edge from '{source}' has no branches")
        else:
            self._edges[source] = ConditionalEdge(
                source=source,
                router=router,
                table=MappingProxyType(dict(table)),
                reads=tuple(reads),
            )
        return self

    def set_entry_point(self, name: str) -> "WorkflowGraph":
        return self.add_edge(START, name)

    def validate(self) -> List[str]:
        """Return every structural problem; an empty list means the graph compiles."""
        problems = list(self._problems)

        entry: Optional[str] = None
        if not self._entries:
            problems.append("no entry point: add an edge from START")
        elif len(self._entries) > 1:
            problems.append(
                f"multiple entry points: {', '.join(repr(e) for e in self._entries)}"
            )
        elif self._entries[0] == END:
            problems.append("the entry edge cannot lead straight to END")
        elif self._entries[0] not in self._nodes:
            problems.append(f"entry edge targets undeclared node '{self._entries[0]}'")
        else:
            entry = self._entries[0]

        for source, edge in self._edges.items():
            if source not in self._nodes:
                problems.append(f"edge from undeclared node '{source}'")
            if isinstance(edge, FixedEdge):
                if edge.target not in self._nodes and edge.target != END:
                    problems.append(
                        f"edge from '{source}' targets undeclared node '{edge.target}'"
                    )
            else:
                for label, target in edge.table.items():
                    if target not in self._nodes and target != END:
                        problems.append(
                            f"branch '{label}' of '{source}' targets undeclared node '{target}'"
                        )

        for name in self._nodes:
            if name not in self._edges:
                problems.append(f"node '{name}' has no outgoing edge")

        problems.extend(self._field_problems())

        if entry is not None:
            reachable = self._reachable_from(entry)
            for name in self._nodes:
                if name not in reachable:
                    problems.append(f"node '{name}' is unreachable from START")
            finishing = self._can_reach_end()
            for name in self._nodes:
                if name in reachable and name not in finishing:
                    problems.append(f"node '{name}' has no path to END")

        return problems

    def compile(
        self,
        *,
        max_steps: Optional[int] = None,
        settings: Optional["Settings"] = None,
    ) -> CompiledWorkflow:
        problems = self.validate()
        if problems:
            self.logger.warning(
                "workflow_graph_invalid", workflow=self.name, problems=problems
            )
            raise GraphValidationError(problems)

        if max_steps is None:
            max_steps = settings.workflow_max_steps if settings else DEFAULT_MAX_STEPS
        if max_steps < 1:
            raise GraphValidationError([f"max_steps must be at least 1, got {max_steps}"])

        index: Dict[str, int] = {name: i for i, name in enumerate(self._nodes)}
        index[END] = TERMINAL
        nodes: List[CompiledNode] = []
        for name, spec in self._nodes.items():
            nodes.append(
                CompiledNode(
                    index=index[name],
                    name=name,
                    fn=spec.fn,
                    edge=self._resolve_edge(self._edges[name], index),
                    writes=spec.writes,
                )
            )

        self.logger.debug(
            "workflow_graph_compiled",
            workflow=self.name,
            nodes=len(nodes),
            max_steps=max_steps,
        )
        return CompiledWorkflow(
            self.name,
            self.schema,
            tuple(nodes),
            index[self._entries[0]],
            max_steps=max_steps,
        )

    def _resolve_edge(self, edge: EdgeSpec, index: Mapping[str, int]) -> ResolvedEdge:
        if isinstance(edge, FixedEdge):
            return ResolvedFixed(target=index[edge.target])
        return ResolvedConditional(
            router=edge.router,
            table=MappingProxyType(
                {label: index[target] for label, target in edge.table.items()}
            ),
        )

    def _field_problems(self) -> List[str]:
        problems: List[str] = []
        for name, spec in self._nodes.items():
            for field_name in spec.reads:
                if field_name not in self.schema:
                    problems.append(
                        f"node '{name}' reads undeclared state field '{field_name}'"
                    )
            for field_name in spec.writes:
                if field_name not in self.schema:
                    problems.append(
                        f"node '{name}' writes undeclared state field '{field_name}'"
                    )
        for source, edge in self._edges.items():
            if isinstance(edge, ConditionalEdge):
                for field_name in edge.reads:
                    if field_name not in self.schema:
                        problems.append(
                            f"router after '{source}' reads undeclared state field '{field_name}'"
                        )
        return problems

    def _successors(self, name: str) -> Tuple[str, ...]:
        edge = self._edges.get(name)
        if edge is None:
            return ()
        return edge_targets(edge)

    def _reachable_from(self, entry: str) -> Set[str]:
        seen: Set[str] = {entry}
        queue = deque([entry])
        while queue:
            for target in self._successors(queue.popleft()):
                if target in self._nodes and target not in seen:
                    seen.add(target)
                    queue.append(target)
        return seen

    def _can_reach_end(self) -> Set[str]:
        predecessors: Dict[str, Set[str]] = {}
        for name in self._nodes:
            for target in self._successors(name):
                predecessors.setdefault(target, set()).add(name)
        seen: Set[str] = set()
        queue = deque([END])
        while queue:
            for source in predecessors.get(queue.popleft(), ()):
                if source not in seen:
                    seen.add(source)
                    queue.append(source)
        return seen


__all__ = ["WorkflowGraph"]
