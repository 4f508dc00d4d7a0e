"""Run the bundled workflows from the command line.

Usage:
    promptgraph ask "Tell me a short joke about programming"
    promptgraph blog --topic "sustainable gardening practices" \\
        --audience "homeowners with limited gardening experience"

    # Without an API key, against the deterministic stub backend:
    promptgraph --backend stub blog --topic "tide pools"

Environment Variables:
    OPENAI_API_KEY: API key for the OpenAI backend (also read from .env)
    MODEL_BACKEND, MODEL_NAME, MODEL_TEMPERATURE: generation settings
    WORKFLOW_MAX_STEPS, QUALITY_*: engine and quality-gate settings

Log lines go to stderr; stdout carries only the command output.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from promptgraph.config import ModelBackend, Settings, get_settings
from promptgraph.graph.errors import WorkflowError
from promptgraph.logging import (
    get_logger,
    log_to_stderr,
    sanitize_error_message,
    sanitize_workflow_trace,
    set_correlation_id,
)
from promptgraph.service.context_store import ContextStore
from promptgraph.service.errors import ConfigurationError
from promptgraph.service.llm import LLMService
from promptgraph.workflows.blog_post import MAX_QUALITY_SCORE, build_blog_post_workflow
from promptgraph.workflows.simple_call import DEFAULT_PROMPT, build_simple_call_workflow

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_WORKFLOW_FAILED = 1
EXIT_MISSING_CREDENTIALS = 2
EXIT_INVALID_SETTINGS = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="promptgraph", description="Run a bundled prompt workflow."
    )
    parser.add_argument(
        "--backend",
        choices=[mode.value for mode in ModelBackend],
        help="Override MODEL_BACKEND for this run",
    )
    parser.add_argument(
        "--show-trace",
        action="store_true",
        help="Print the workflow trace (node, status, timing) after the run",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Send one prompt through the single-call workflow")
    ask.add_argument("prompt", nargs="?", default=DEFAULT_PROMPT)

    blog = sub.add_parser("blog", help="Generate a blog post with a quality gate")
    blog.add_argument("--topic", required=True)
    blog.add_argument(
        "--audience", default="homeowners with limited gardening experience"
    )
    blog.add_argument(
        "--user-id", help="Shape the post with this reader's stored preferences"
    )
    blog.add_argument(
        "--tone",
        choices=["formal", "casual", "professional"],
        help="Store this tone for --user-id before generating",
    )
    return parser


async def run_ask(args: argparse.Namespace, settings: Settings, llm: LLMService) -> int:
    workflow = build_simple_call_workflow(llm, settings=settings)
    print(f'User input: "{args.prompt}"')
    result = await workflow.run({"prompt": args.prompt})
    print("\nResponse:")
    print(result.state["response"])
    _print_trace(args, result.trace)
    return EXIT_OK


async def run_blog(args: argparse.Namespace, settings: Settings, llm: LLMService) -> int:
    store: Optional[ContextStore] = None
    if args.user_id:
        store = ContextStore()
        if args.tone:
            store.update(args.user_id, {"preferences": {"tone": args.tone}})
    workflow = build_blog_post_workflow(llm, settings, context_store=store)
    print(f'Generating blog post about "{args.topic}" for {args.audience}...')
    result = await workflow.run(
        {"topic": args.topic, "target_audience": args.audience, "user_id": args.user_id}
    )
    print("\n=== FINAL BLOG POST ===\n")
    print(result.state["formatted_content"])
    print("\n=== QUALITY SCORE ===")
    print(f"{result.state['quality']}/{MAX_QUALITY_SCORE} ({result.terminal_label})")
    _print_trace(args, result.trace)
    return EXIT_OK


def _print_trace(args: argparse.Namespace, trace: list) -> None:
    if args.show_trace:
        print("\n=== TRACE ===")
        print(json.dumps(sanitize_workflow_trace(trace), indent=2))


_COMMANDS = {"ask": run_ask, "blog": run_blog}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "blog" and args.tone and not args.user_id:
        parser.error("--tone requires --user-id")
    log_to_stderr()
    set_correlation_id()

    try:
        settings = get_settings()
    except PydanticValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err["loc"])
        logger.error("cli_settings_invalid", fields=fields)
        print(f"Error: invalid settings ({fields or 'see log'})", file=sys.stderr)
        return EXIT_INVALID_SETTINGS
    if args.backend:
        settings = settings.model_copy(update={"model_backend": ModelBackend(args.backend)})

    try:
        llm = LLMService.from_settings(settings)
    except ConfigurationError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        print("Please create a .env file with your OpenAI API key", file=sys.stderr)
        return EXIT_MISSING_CREDENTIALS

    try:
        return asyncio.run(_COMMANDS[args.command](args, settings, llm))
    except WorkflowError as exc:
        logger.error(
            "cli_workflow_failed",
            command=args.command,
            error=sanitize_error_message(str(exc)),
        )
        print(f"Error: {sanitize_error_message(str(exc))}", file=sys.stderr)
        cause = getattr(exc, "cause", None)
        if cause is not None:
            print(f"Cause: {sanitize_error_message(str(cause))}", file=sys.stderr)
        return EXIT_WORKFLOW_FAILED


if __name__ == "__main__":
    sys.exit(main())
