from __future__ import annotations

import asyncio
import time
from typing import Optional

from promptgraph.config import ModelBackend as BackendMode
from promptgraph.config import Settings
from promptgraph.logging import get_logger
from promptgraph.service.errors import (
    ConfigurationError,
    GenerationError,
    TransientGenerationError,
)
from promptgraph.service.model_backend import ModelBackend, OpenAIBackend, StubBackend

logger = get_logger(__name__)


class LLMService:
    """Text-generation collaborator called from workflow nodes.

    ``generate`` takes a prompt and returns the generated text, or raises a
    ``TransientGenerationError`` / ``PermanentGenerationError``. The call is
    bounded by ``timeout_seconds``; expiry counts as transient.
    """

    def __init__(
        self,
        backend: ModelBackend,
        *,
        model: str = "gpt-4o",
        temperature: float = 0.7,
        timeout_seconds: float = 60.0,
        system_prompt: Optional[str] = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.system_prompt = system_prompt

    @classmethod
    def from_settings(
        cls, settings: Settings, *, backend: Optional[ModelBackend] = None
    ) -> "LLMService":
        return cls(
            backend or cls._build_backend(settings),
            model=settings.model_name,
            temperature=settings.model_temperature,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    @staticmethod
    def _build_backend(settings: Settings) -> ModelBackend:
        if settings.model_backend == BackendMode.STUB:
            return StubBackend()
        if not settings.openai_api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY environment variable is not set",
                detail={"backend": settings.model_backend.value},
            )
        return OpenAIBackend(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.llm_timeout_seconds,
        )

    async def generate(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        target_model = model or self.model
        target_temperature = self.temperature if temperature is None else temperature
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})

        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self.backend.generate(
                    messages, model=target_model, temperature=target_temperature
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "llm_generation_timeout",
                model=target_model,
                timeout_seconds=self.timeout_seconds,
            )
            raise TransientGenerationError(
                "text generation timed out",
                detail={"model": target_model, "timeout_seconds": self.timeout_seconds},
            ) from exc
        except GenerationError as exc:
            logger.warning(
                "llm_generation_failed",
                model=target_model,
                transient=exc.transient,
                error=exc.message,
            )
            raise

        logger.info(
            "llm_generation_completed",
            model=target_model,
            backend=self.backend.mode,
            duration_ms=int((time.monotonic() - started) * 1000),
            usage=result.get("usage", {}),
        )
        return result.get("content", "")


__all__ = ["LLMService"]
