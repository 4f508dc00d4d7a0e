"""Blog-post prompt chain ending in a quality gate.

outline -> draft -> SEO pass -> engagement pass -> markdown formatting, then a
heuristic quality score decides whether the post is done or gets another
improvement pass. When a context store is supplied the reader's stored
preferences (tone, language, interests) shape every prompt.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from promptgraph.config import Settings
from promptgraph.graph.builder import WorkflowGraph
from promptgraph.graph.edges import END, START
from promptgraph.graph.executor import CompiledWorkflow
from promptgraph.graph.quality_gate import QualityGate, add_quality_gate
from promptgraph.graph.state import MergeStrategy, StateField, StateSchema
from promptgraph.logging import get_logger
from promptgraph.service.context_store import ContextStore
from promptgraph.service.llm import LLMService

MAX_QUALITY_SCORE = 8
IMPROVEMENT_DELTA = 2

BLOG_POST_SCHEMA = StateSchema(
    StateField("topic", str, default=""),
    StateField("target_audience", str, default="a general audience"),
    StateField("user_id", Optional[str]),
    StateField("preferences", Dict[str, Any], merge=MergeStrategy.NESTED_MERGE),
    StateField("outline", Optional[str]),
    StateField("draft", Optional[str]),
    StateField("seo_optimized", Optional[str]),
    StateField("engaging_content", Optional[str]),
    StateField("formatted_content", Optional[str]),
    StateField("quality", Optional[int]),
    StateField("improvement_passes", int, default=0),
)

logger = get_logger(__name__)


def score_content(text: str) -> int:
    """Heuristic quality score in [1, 8] for a formatted post."""
    score = 0
    if len(text) > 4000:
        score += 3
    elif len(text) > 2000:
        score += 2
    else:
        score += 1

    if "#" in text:
        score += 1
    if "*" in text:
        score += 1
    if ">" in text:
        score += 1

    lowered = text.lower()
    if "%" in text or "according to" in lowered or "research" in lowered:
        score += 2
    return score


def _voice(state: Mapping[str, Any]) -> str:
    prefs = state.get("preferences") or {}
    tone = prefs.get("tone") or "conversational"
    language = prefs.get("language") or "en"
    line = f"Write in a {tone} tone, in the language with code '{language}'."
    interests = prefs.get("interests") or []
    if interests:
        line += f" Where it fits, relate the topic to: {', '.join(interests)}."
    return line


class BlogPostNodes:
    """Node implementations; each returns only the fields it changes."""

    def __init__(
        self, llm: LLMService, context_store: Optional[ContextStore] = None
    ) -> None:
        self.llm = llm
        self.context_store = context_store

    def load_reader_context(self, state: Mapping[str, Any]) -> dict:
        user_id = state.get("user_id")
        if not user_id or self.context_store is None:
            return {}
        context = self.context_store.get(user_id)
        return {"preferences": context.preferences.model_dump()}

    async def generate_outline(self, state: Mapping[str, Any]) -> dict:
        outline = await self.llm.generate(
            f'Create a detailed outline for a blog post about "{state["topic"]}" '
            f'aimed at {state["target_audience"]}. Give 4-6 main sections, each with '
            f"bullet points for the key talking points.\n{_voice(state)}"
        )
        return {"outline": outline}

    async def create_draft(self, state: Mapping[str, Any]) -> dict:
        draft = await self.llm.generate(
            f"Following this outline:\n\n{state['outline']}\n\n"
            f'write a first draft of a blog post about "{state["topic"]}" for '
            f"{state['target_audience']}. Aim for 800-1000 words.\n{_voice(state)}"
        )
        return {"draft": draft}

    async def optimize_for_seo(self, state: Mapping[str, Any]) -> dict:
        topic = state["topic"]
        optimized = await self.llm.generate(
            f"Optimize this draft for search engines:\n\n{state['draft']}\n\n"
            f'1. Give it a compelling title containing "{topic}".\n'
            f'2. Use the keyword "{topic}" naturally throughout.\n'
            "3. Add H2/H3 subheadings that carry secondary keywords.\n"
            "4. Keep paragraphs to 3-4 sentences.\n"
            "5. Add a meta description of at most 150 characters."
        )
        return {"seo_optimized": optimized}

    async def add_engaging_elements(self, state: Mapping[str, Any]) -> dict:
        engaging = await self.llm.generate(
            f"Make this post more engaging:\n\n{state['seo_optimized']}\n\n"
            "1. Add 2-3 relevant statistics or data points with sources.\n"
            "2. Include 1-2 short examples or case studies.\n"
            "3. Pose a thought-provoking question to the reader.\n"
            "4. Close with a call to action."
        )
        return {"engaging_content": engaging}

    async def format_content(self, state: Mapping[str, Any]) -> dict:
        formatted = await self.llm.generate(
            f"Format this post as markdown:\n\n{state['engaging_content']}\n\n"
            "1. # for the title, ## for sections, ### for subsections.\n"
            "2. Proper bulleted or numbered lists.\n"
            "3. **bold** for key terms and *italics* for emphasis.\n"
            "4. > blockquotes where they help.\n"
            "5. Blank lines between paragraphs."
        )
        return {"formatted_content": formatted}

    def quality_check(self, state: Mapping[str, Any]) -> dict:
        quality = score_content(state.get("formatted_content") or "")
        logger.info("blog_post_scored", quality=quality, max_score=MAX_QUALITY_SCORE)
        return {"quality": quality}

    async def improve_content(self, state: Mapping[str, Any]) -> dict:
        improved = await self.llm.generate(
            f"This post scored {state['quality']}/{MAX_QUALITY_SCORE} on our quality "
            "check. Improve it with:\n"
            "1. More detail and specific examples.\n"
            "2. Cleaner markdown formatting.\n"
            "3. At least 2 statistics or data points with sources.\n"
            "4. A stronger introduction and conclusion.\n"
            "5. Subheadings that include keywords.\n\n"
            f"Post:\n{state['formatted_content']}\n{_voice(state)}"
        )
        return {
            "formatted_content": improved,
            "quality": state["quality"] + IMPROVEMENT_DELTA,
        }


def build_blog_post_workflow(
    llm: LLMService,
    settings: Settings,
    *,
    context_store: Optional[ContextStore] = None,
) -> CompiledWorkflow:
    nodes = BlogPostNodes(llm, context_store)
    graph = WorkflowGraph(BLOG_POST_SCHEMA, name="blog_post")

    chain = [
        ("generate_outline", nodes.generate_outline, ("topic", "target_audience", "preferences"), ("outline",)),
        ("create_draft", nodes.create_draft, ("outline", "topic", "target_audience", "preferences"), ("draft",)),
        ("optimize_for_seo", nodes.optimize_for_seo, ("draft", "topic"), ("seo_optimized",)),
        ("add_engaging_elements", nodes.add_engaging_elements, ("seo_optimized",), ("engaging_content",)),
        ("format_content", nodes.format_content, ("engaging_content",), ("formatted_content",)),
    ]

    if context_store is not None:
        graph.add_node(
            "load_reader_context",
            nodes.load_reader_context,
            reads=("user_id",),
            writes=("preferences",),
        )
        graph.add_edge(START, "load_reader_context")
        previous = "load_reader_context"
    else:
        previous = START

    for name, fn, reads, writes in chain:
        graph.add_node(name, fn, reads=reads, writes=writes)
        graph.add_edge(previous, name)
        previous = name
    graph.add_edge(previous, "quality_check")

    gate = QualityGate(
        score_field="quality",
        threshold=settings.quality_threshold,
        medium_threshold=settings.quality_medium_threshold,
        max_retries=settings.quality_max_retries,
        retries_field="improvement_passes",
    )
    add_quality_gate(
        graph,
        gate,
        score_node="quality_check",
        scorer=nodes.quality_check,
        improve_node="improve_content",
        improver=nodes.improve_content,
        on_medium=END,
        score_reads=("formatted_content",),
        improve_reads=("formatted_content", "preferences"),
        improve_writes=("formatted_content",),
    )
    return graph.compile(settings=settings)


__all__ = [
    "BLOG_POST_SCHEMA",
    "BlogPostNodes",
    "IMPROVEMENT_DELTA",
    "MAX_QUALITY_SCORE",
    "build_blog_post_workflow",
    "score_content",
]
