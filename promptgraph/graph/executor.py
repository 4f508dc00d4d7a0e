from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from collections.abc import Hashable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog

from promptgraph.graph.edges import (
    END,
    TERMINAL,
    CompiledNode,
    ResolvedConditional,
    ResolvedFixed,
)
from promptgraph.graph.errors import LoopBoundExceeded, NodeError, RoutingError
from promptgraph.graph.state import StateSchema, read_only_view
from promptgraph.logging import get_logger, log_workflow_trace

DEFAULT_MAX_STEPS = 100  # node executions per invocation
MAX_TRACE_ENTRIES = 500


class RunStatus(str, Enum):
    """Outcome reported on results and on terminal log events."""

    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunResult:
    """Outcome of one completed invocation."""

    run_id: str
    state: Dict[str, Any]
    visited: List[str]
    terminal_label: Optional[str]
    steps: int
    trace: List[Dict[str, Any]] = field(default_factory=list)
    status: RunStatus = RunStatus.COMPLETED

    def visits(self, node: str) -> int:
        return self.visited.count(node)


class CompiledWorkflow:
    """A validated workflow whose names are resolved to node indices.

    Instances hold no per-invocation data; every ``run`` builds its own
    execution state, so one compiled workflow can serve concurrent
    invocations.
    """

    def __init__(
        self,
        name: str,
        schema: StateSchema,
        nodes: Tuple[CompiledNode, ...],
        entry: int,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self._name = name
        self._schema = schema
        self._nodes = nodes
        self._entry = entry
        self._max_steps = max_steps
        self.logger = get_logger(__name__)

    @property
    def name(self) -> str:
        return self._name

    @property
    def schema(self) -> StateSchema:
        return self._schema

    @property
    def max_steps(self) -> int:
        return self._max_steps

    @property
    def entry(self) -> str:
        return self._nodes[self._entry].name

    @property
    def node_names(self) -> Tuple[str, ...]:
        return tuple(node.name for node in self._nodes)

    def describe(self) -> Dict[str, Any]:
        """Structure of the compiled graph, for logging and inspection."""
        edges: Dict[str, Any] = {}
        for node in self._nodes:
            if isinstance(node.edge, ResolvedFixed):
                edges[node.name] = self._target_name(node.edge.target)
            else:
                edges[node.name] = {
                    label: self._target_name(target)
                    for label, target in node.edge.table.items()
                }
        return {
            "name": self._name,
            "entry": self.entry,
            "nodes": list(self.node_names),
            "edges": edges,
            "merge": {k: v.value for k, v in self._schema.merge_table().items()},
            "max_steps": self._max_steps,
        }

    async def invoke(self, seed: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Run the workflow and return only the final state."""
        result = await self.run(seed)
        return result.state

    async def run(
        self,
        seed: Optional[Mapping[str, Any]] = None,
        *,
        run_id: Optional[str] = None,
    ) -> RunResult:
        state = self._schema.initial(seed)
        run_id = run_id or uuid.uuid4().hex
        with structlog.contextvars.bound_contextvars(workflow=self._name, run_id=run_id):
            return await self._execute(state, run_id)

    async def _execute(self, state: Dict[str, Any], run_id: str) -> RunResult:
        trace: List[Dict[str, Any]] = []
        visited: List[str] = []
        steps = 0
        node = self._nodes[self._entry]
        self.logger.info("workflow_started", entry=node.name, max_steps=self._max_steps)

        while True:
            # Step guard runs before the next node is scheduled
            if steps >= self._max_steps:
                self.logger.warning(
                    "workflow_loop_bound_exceeded",
                    node=node.name,
                    max_steps=self._max_steps,
                    status=RunStatus.FAILED.value,
                )
                log_workflow_trace(trace, self.logger)
                raise LoopBoundExceeded(
                    self._max_steps, node=node.name, state=state, trace=trace
                )

            steps += 1
            visited.append(node.name)
            entry, state = await self._run_node(node, state, trace)

            label: Optional[str] = None
            if isinstance(node.edge, ResolvedFixed):
                target = node.edge.target
            else:
                label, target = self._route(node, node.edge, state, trace)
                entry["label"] = label
            entry["next"] = self._target_name(target)

            if target == TERMINAL:
                self.logger.info(
                    "workflow_completed",
                    steps=steps,
                    terminal_label=label,
                    status=RunStatus.COMPLETED.value,
                )
                log_workflow_trace(trace, self.logger)
                return RunResult(
                    run_id=run_id,
                    state=state,
                    visited=visited,
                    terminal_label=label,
                    steps=steps,
                    trace=trace,
                )
            node = self._nodes[target]

    async def _run_node(
        self,
        node: CompiledNode,
        state: Dict[str, Any],
        trace: List[Dict[str, Any]],
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Execute one node, then merge; on failure nothing is merged."""
        started = time.monotonic()
        self.logger.debug("workflow_node_started", node=node.name)
        try:
            output = node.fn(read_only_view(state))
            if inspect.isawaitable(output):
                output = await output
            partial = self._check_output(node, output)
            next_state = self._schema.merge(state, partial)
        except asyncio.CancelledError:
            self.logger.warning(
                "workflow_cancelled", node=node.name, status=RunStatus.FAILED.value
            )
            raise
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            self._append_trace(
                trace,
                {
                    "node": node.name,
                    "status": "error",
                    "error": str(exc),
                    "duration_ms": duration_ms,
                },
            )
            self.logger.error(
                "workflow_node_failed",
                node=node.name,
                error=str(exc),
                error_type=type(exc).__name__,
                duration_ms=duration_ms,
                status=RunStatus.FAILED.value,
            )
            log_workflow_trace(trace, self.logger)
            cause = exc.cause if isinstance(exc, NodeError) and exc.cause else exc
            raise NodeError(node.name, cause, state=state, trace=trace) from exc

        duration_ms = int((time.monotonic() - started) * 1000)
        entry = {
            "node": node.name,
            "status": "ok",
            "duration_ms": duration_ms,
            "output_keys": sorted(partial),
        }
        self._append_trace(trace, entry)
        self.logger.info(
            "workflow_node_completed",
            node=node.name,
            duration_ms=duration_ms,
            output_keys=entry["output_keys"],
        )
        return entry, next_state

    def _check_output(self, node: CompiledNode, output: Any) -> Dict[str, Any]:
        if output is None:
            return {}
        if not isinstance(output, Mapping):
            raise TypeError(
                f"node returned {type(output).__name__}, expected a mapping of state updates"
            )
        partial = dict(output)
        if node.writes:
            undeclared = sorted(str(key) for key in partial if key not in node.writes)
            if undeclared:
                raise ValueError(
                    f"node wrote fields it did not declare: {', '.join(undeclared)}"
                )
        return partial

    def _route(
        self,
        node: CompiledNode,
        edge: ResolvedConditional,
        state: Dict[str, Any],
        trace: List[Dict[str, Any]],
    ) -> Tuple[str, int]:
        try:
            label = edge.router(read_only_view(state))
        except Exception as exc:
            self.logger.error(
                "workflow_router_failed",
                node=node.name,
                error=str(exc),
                status=RunStatus.FAILED.value,
            )
            log_workflow_trace(trace, self.logger)
            raise RoutingError(
                node.name,
                message=f"router raised {type(exc).__name__}: {exc}",
                cause=exc,
                state=state,
                trace=trace,
            ) from exc

        if inspect.isawaitable(label):
            if inspect.iscoroutine(label):
                label.close()
            self.logger.error(
                "workflow_router_not_synchronous",
                node=node.name,
                status=RunStatus.FAILED.value,
            )
            raise RoutingError(
                node.name,
                message="routers must be synchronous functions of state",
                state=state,
                trace=trace,
            )

        target = edge.table.get(label) if isinstance(label, Hashable) else None
        if target is None:
            self.logger.error(
                "workflow_route_unknown_label",
                node=node.name,
                label=repr(label),
                known_labels=sorted(edge.table),
                status=RunStatus.FAILED.value,
            )
            log_workflow_trace(trace, self.logger)
            raise RoutingError(node.name, label, state=state, trace=trace)

        self.logger.info(
            "workflow_route_selected",
            node=node.name,
            label=label,
            target=self._target_name(target),
        )
        return label, target

    def _target_name(self, target: int) -> str:
        return END if target == TERMINAL else self._nodes[target].name

    def _append_trace(
        self,
        trace: List[Dict[str, Any]],
        entry: Dict[str, Any],
        max_entries: int = MAX_TRACE_ENTRIES,
    ) -> None:
        """Append to the trace with bounded size."""

        trace.append(entry)
        if len(trace) > max_entries:
            # Drop oldest entries to avoid unbounded growth during long loops
            del trace[0 : len(trace) - max_entries]


__all__ = ["DEFAULT_MAX_STEPS", "RunStatus", "RunResult", "CompiledWorkflow"]
