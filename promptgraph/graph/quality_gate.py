"""Quality-gate composition: score, route on the score, improve and retry.

The gate is built entirely from graph primitives. A scoring node writes a
numeric score, a router maps it to one of four labels, and an improvement
node revises the content and raises the score before the router runs again.

Termination rests on the improvement node making progress. With
``require_progress`` the gate enforces it, failing the node when the score did
not strictly increase; with ``max_retries`` it also caps the number of
improvement passes and routes to ``exhausted`` once the budget is spent.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from promptgraph.graph.builder import WorkflowGraph
from promptgraph.graph.edges import END, NodeFn
from promptgraph.logging import get_logger

HIGH = "high"
MEDIUM = "medium"
LOW = "low"
EXHAUSTED = "exhausted"

logger = get_logger(__name__)


class NoProgressError(RuntimeError):
    """An improvement pass did not raise the quality score."""


@dataclass(frozen=True)
class QualityGate:
    score_field: str
    threshold: float
    medium_threshold: Optional[float] = None
    max_retries: Optional[int] = None
    retries_field: Optional[str] = None

    def __post_init__(self) -> None:
        if self.medium_threshold is not None and self.medium_threshold > self.threshold:
            raise ValueError("medium_threshold must not exceed threshold")
        if self.max_retries is not None:
            if self.max_retries < 0:
                raise ValueError("max_retries must not be negative")
            if not self.retries_field:
                raise ValueError("max_retries needs a retries_field to count passes")

    @property
    def reads(self) -> tuple:
        if self.retries_field:
            return (self.score_field, self.retries_field)
        return (self.score_field,)

    def route(self, state: Mapping[str, Any]) -> str:
        score = state.get(self.score_field)
        if score is not None and score >= self.threshold:
            return HIGH
        if self.max_retries is not None:
            if (state.get(self.retries_field) or 0) >= self.max_retries:
                return EXHAUSTED
        if (
            score is not None
            and self.medium_threshold is not None
            and score >= self.medium_threshold
        ):
            return MEDIUM
        return LOW

    def wrap_improver(self, improver: NodeFn, *, require_progress: bool = True) -> NodeFn:
        """Wrap an improvement node with progress checking and pass counting."""

        async def improve(state: Mapping[str, Any]) -> dict:
            output = improver(state)
            if inspect.isawaitable(output):
                output = await output
            partial = dict(output or {})
            before = state.get(self.score_field)
            after = partial.get(self.score_field)
            if require_progress and (
                after is None or (before is not None and not after > before)
            ):
                raise NoProgressError(
                    f"improvement left '{self.score_field}' at {after!r} (was {before!r})"
                )
            if self.retries_field:
                partial[self.retries_field] = (state.get(self.retries_field) or 0) + 1
            logger.info(
                "quality_gate_improved",
                score_before=before,
                score_after=after,
                passes=partial.get(self.retries_field),
            )
            return partial

        return improve


def add_quality_gate(
    graph: WorkflowGraph,
    gate: QualityGate,
    *,
    score_node: str,
    scorer: NodeFn,
    improve_node: str,
    improver: NodeFn,
    on_pass: str = END,
    on_medium: Optional[str] = None,
    on_exhausted: str = END,
    rescore: bool = False,
    require_progress: bool = True,
    score_reads: Iterable[str] = (),
    improve_reads: Iterable[str] = (),
    improve_writes: Iterable[str] = (),
) -> WorkflowGraph:
    """Add a scoring node, an improvement node and the gate routing to ``graph``.

    ``on_medium`` defaults to another improvement pass. With ``rescore`` the
    improvement node feeds back through the scoring node instead of straight
    into the router, so the scorer decides whether the revision helped.
    """
    improve_writes = tuple(improve_writes)
    if improve_writes:
        extra = [gate.score_field] + ([gate.retries_field] if gate.retries_field else [])
        improve_writes = improve_writes + tuple(f for f in extra if f not in improve_writes)

    table = {
        HIGH: on_pass,
        MEDIUM: on_medium or improve_node,
        LOW: improve_node,
        EXHAUSTED: on_exhausted,
    }

    graph.add_node(
        score_node, scorer, reads=score_reads, writes=(gate.score_field,)
    )
    graph.add_node(
        improve_node,
        gate.wrap_improver(improver, require_progress=require_progress),
        reads=tuple(improve_reads) + gate.reads,
        writes=improve_writes,
    )
    graph.add_conditional_edge(score_node, gate.route, table, reads=gate.reads)
    if rescore:
        graph.add_edge(improve_node, score_node)
    else:
        graph.add_conditional_edge(improve_node, gate.route, table, reads=gate.reads)
    return graph


__all__ = [
    "HIGH",
    "MEDIUM",
    "LOW",
    "EXHAUSTED",
    "NoProgressError",
    "QualityGate",
    "add_quality_gate",
]
