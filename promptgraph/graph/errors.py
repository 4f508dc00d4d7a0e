from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence


class WorkflowError(Exception):
    """Base class for workflow engine failures.

    Runtime failures carry the last committed state and the trace recorded so
    far, so callers can inspect exactly what the invocation had done before it
    stopped.
    """

    def __init__(
        self,
        message: str,
        *,
        state: Optional[Mapping[str, Any]] = None,
        trace: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.state: Dict[str, Any] = dict(state) if state is not None else {}
        self.trace: List[Dict[str, Any]] = list(trace or [])


class StateError(WorkflowError):
    """A seed or partial update does not fit the state schema."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class GraphValidationError(WorkflowError):
    """Structural defects found while compiling a workflow graph."""

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = list(problems)
        summary = "; ".join(self.problems) or "invalid workflow graph"
        super().__init__(f"workflow graph is invalid: {summary}")


class NodeError(WorkflowError):
    """A node's unit of work failed; nothing it returned was merged."""

    def __init__(
        self,
        node: str,
        cause: Optional[BaseException] = None,
        *,
        message: Optional[str] = None,
        state: Optional[Mapping[str, Any]] = None,
        trace: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> None:
        detail = message or (str(cause) if cause is not None else "node failed")
        super().__init__(f"node '{node}' failed: {detail}", state=state, trace=trace)
        self.node = node
        self.cause = cause


class RoutingError(WorkflowError):
    """A conditional edge produced a label missing from its table, or its router raised."""

    def __init__(
        self,
        node: str,
        label: Any = None,
        *,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None,
        state: Optional[Mapping[str, Any]] = None,
        trace: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> None:
        detail = message or f"unrecognized branch label {label!r}"
        super().__init__(
            f"routing after '{node}' failed: {detail}", state=state, trace=trace
        )
        self.node = node
        self.label = label
        self.cause = cause


class LoopBoundExceeded(WorkflowError):
    """The per-invocation step guard tripped before the terminal sentinel was reached."""

    def __init__(
        self,
        max_steps: int,
        *,
        node: Optional[str] = None,
        state: Optional[Mapping[str, Any]] = None,
        trace: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> None:
        where = f" before running '{node}'" if node else ""
        super().__init__(
            f"workflow exceeded {max_steps} steps{where}", state=state, trace=trace
        )
        self.max_steps = max_steps
        self.node = node


__all__ = [
    "WorkflowError",
    "StateError",
    "GraphValidationError",
    "NodeError",
    "RoutingError",
    "LoopBoundExceeded",
]
