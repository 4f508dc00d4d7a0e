from __future__ import annotations

from typing import Any, Mapping, Optional

from promptgraph.config import Settings
from promptgraph.graph.builder import WorkflowGraph
from promptgraph.graph.edges import END, START
from promptgraph.graph.executor import CompiledWorkflow
from promptgraph.graph.state import StateField, StateSchema
from promptgraph.logging import get_logger
from promptgraph.service.llm import LLMService

DEFAULT_PROMPT = "Tell me a short joke about programming"

SIMPLE_CALL_SCHEMA = StateSchema(
    StateField("prompt", str, default=DEFAULT_PROMPT),
    StateField("response", Optional[str]),
)

logger = get_logger(__name__)


def build_simple_call_workflow(
    llm: LLMService, *, settings: Optional[Settings] = None
) -> CompiledWorkflow:
    """One text-generation call between START and END."""

    async def call_llm(state: Mapping[str, Any]) -> dict:
        logger.info("llm_request_sent", prompt_chars=len(state["prompt"]))
        return {"response": await llm.generate(state["prompt"])}

    graph = WorkflowGraph(SIMPLE_CALL_SCHEMA, name="simple_call")
    graph.add_node("call_llm", call_llm, reads=("prompt",), writes=("response",))
    graph.add_edge(START, "call_llm")
    graph.add_edge("call_llm", END)
    return graph.compile(settings=settings)


__all__ = ["DEFAULT_PROMPT", "SIMPLE_CALL_SCHEMA", "build_simple_call_workflow"]
