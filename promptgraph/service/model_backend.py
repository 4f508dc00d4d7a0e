from __future__ import annotations

from typing import Any, Callable, List, Optional, Protocol

import openai
from openai import AsyncOpenAI

from promptgraph.logging import get_logger
from promptgraph.service.errors import (
    PermanentGenerationError,
    TransientGenerationError,
)

logger = get_logger(__name__)

# openai errors worth retrying at a higher level: the request may succeed later
_TRANSIENT_OPENAI_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class ModelBackend(Protocol):
    """Interface for pluggable generation backends."""

    mode: str

    async def generate(
        self,
        messages: List[dict],
        *,
        model: str,
        temperature: float,
    ) -> dict: ...


class OpenAIBackend:
    """Chat-completions backend for OpenAI and compatible APIs."""

    mode = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.client = client or AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout
        )

    async def generate(
        self,
        messages: List[dict],
        *,
        model: str,
        temperature: float,
    ) -> dict:
        try:
            completion = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
            )
        except _TRANSIENT_OPENAI_ERRORS as exc:
            raise TransientGenerationError(
                f"text generation temporarily unavailable: {exc}",
                detail={"provider": self.mode, "model": model},
            ) from exc
        except openai.APIError as exc:
            raise PermanentGenerationError(
                f"text generation rejected: {exc}",
                detail={"provider": self.mode, "model": model},
            ) from exc

        choices = getattr(completion, "choices", None) or []
        first_choice = next(iter(choices), None)
        if not first_choice:
            logger.warning("llm_completion_empty", model=model)
            raise PermanentGenerationError(
                "completion returned no choices",
                detail={"provider": self.mode, "model": model},
            )
        usage = getattr(completion, "usage", None)
        return {
            "content": first_choice.message.content or "",
            "usage": {
                "prompt_tokens": getattr(usage, "prompt_tokens", 0),
                "completion_tokens": getattr(usage, "completion_tokens", 0),
                "total_tokens": getattr(usage, "total_tokens", 0),
            },
        }


class StubBackend:
    """Deterministic backend for tests and offline runs.

    Replies with ``STUB_RESPONSE`` followed by the last user message, or with
    whatever ``reply`` returns for that message when given.
    """

    mode = "stub"
    STUB_RESPONSE = "This is a stub response from promptgraph."

    def __init__(self, reply: Optional[Callable[[str], str]] = None) -> None:
        self.reply = reply
        self.calls: List[dict] = []

    async def generate(
        self,
        messages: List[dict],
        *,
        model: str,
        temperature: float,
    ) -> dict:
        prompt = _last_user_content(messages)
        self.calls.append({"model": model, "temperature": temperature, "prompt": prompt})
        if self.reply is not None:
            content = self.reply(prompt)
        else:
            content = f"{self.STUB_RESPONSE}\n\n{prompt}"
        prompt_tokens = len(prompt.split())
        completion_tokens = len(content.split())
        return {
            "content": content,
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }


def _last_user_content(messages: List[dict]) -> str:
    for msg in reversed(messages):
        if msg.get("role") == "user":
            content: Any = msg.get("content", "")
            return content if isinstance(content, str) else str(content)
    return ""


__all__ = ["ModelBackend", "OpenAIBackend", "StubBackend"]
