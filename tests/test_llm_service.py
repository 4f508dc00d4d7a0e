"""Tests for the text-generation service and its backends."""

import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from promptgraph.config import ModelBackend, Settings
from promptgraph.service.errors import (
    ConfigurationError,
    PermanentGenerationError,
    TransientGenerationError,
)
from promptgraph.service.llm import LLMService
from promptgraph.service.model_backend import OpenAIBackend, StubBackend

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class FakeCompletions:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.result


def _fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _completion(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=3, completion_tokens=4, total_tokens=7),
    )


@pytest.mark.asyncio
async def test_stub_backend_echoes_prompt():
    backend = StubBackend()
    llm = LLMService(backend, model="test-model", temperature=0.2)

    text = await llm.generate("Hello there")

    assert text == f"{StubBackend.STUB_RESPONSE}\n\nHello there"
    assert backend.calls == [
        {"model": "test-model", "temperature": 0.2, "prompt": "Hello there"}
    ]


@pytest.mark.asyncio
async def test_stub_backend_custom_reply_and_overrides():
    backend = StubBackend(reply=lambda prompt: prompt.upper())
    llm = LLMService(backend)

    text = await llm.generate("quiet", model="other", temperature=0.0)

    assert text == "QUIET"
    assert backend.calls[0]["model"] == "other"
    assert backend.calls[0]["temperature"] == 0.0


@pytest.mark.asyncio
async def test_system_prompt_is_sent_first():
    completions = FakeCompletions(result=_completion("ok"))
    backend = OpenAIBackend(client=_fake_client(completions))
    llm = LLMService(backend, system_prompt="Be brief.")

    await llm.generate("hi")

    messages = completions.calls[0]["messages"]
    assert messages[0] == {"role": "system", "content": "Be brief."}
    assert messages[-1] == {"role": "user", "content": "hi"}


@pytest.mark.asyncio
async def test_openai_backend_returns_content():
    completions = FakeCompletions(result=_completion("A joke."))
    llm = LLMService(OpenAIBackend(client=_fake_client(completions)), model="gpt-4o")

    text = await llm.generate("Tell me a joke")

    assert text == "A joke."
    assert completions.calls[0]["model"] == "gpt-4o"


@pytest.mark.asyncio
async def test_openai_connection_error_is_transient():
    completions = FakeCompletions(error=openai.APIConnectionError(request=_REQUEST))
    llm = LLMService(OpenAIBackend(client=_fake_client(completions)))

    with pytest.raises(TransientGenerationError) as exc_info:
        await llm.generate("hi")

    assert exc_info.value.transient is True
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_openai_bad_request_is_permanent():
    error = openai.BadRequestError(
        "bad request",
        response=httpx.Response(400, request=_REQUEST),
        body=None,
    )
    llm = LLMService(OpenAIBackend(client=_fake_client(FakeCompletions(error=error))))

    with pytest.raises(PermanentGenerationError) as exc_info:
        await llm.generate("hi")

    assert exc_info.value.transient is False


@pytest.mark.asyncio
async def test_empty_choices_is_permanent():
    result = SimpleNamespace(choices=[], usage=None)
    llm = LLMService(OpenAIBackend(client=_fake_client(FakeCompletions(result=result))))

    with pytest.raises(PermanentGenerationError):
        await llm.generate("hi")


@pytest.mark.asyncio
async def test_timeout_is_transient():
    class SlowBackend:
        mode = "slow"

        async def generate(self, messages, *, model, temperature):
            await asyncio.sleep(1)
            return {"content": "late"}

    llm = LLMService(SlowBackend(), timeout_seconds=0.01)

    with pytest.raises(TransientGenerationError) as exc_info:
        await llm.generate("hi")

    assert "timed out" in exc_info.value.message


def test_from_settings_stub_backend():
    settings = Settings(model_backend="stub", model_name="m", model_temperature=0.1)

    llm = LLMService.from_settings(settings)

    assert isinstance(llm.backend, StubBackend)
    assert llm.model == "m"
    assert llm.temperature == 0.1


def test_from_settings_requires_api_key():
    settings = Settings(model_backend=ModelBackend.OPENAI, openai_api_key=None)

    with pytest.raises(ConfigurationError) as exc_info:
        LLMService.from_settings(settings)

    assert "OPENAI_API_KEY" in exc_info.value.message


def test_from_settings_builds_openai_backend():
    settings = Settings(model_backend="openai", openai_api_key="sk-test-key-123456")

    llm = LLMService.from_settings(settings)

    assert isinstance(llm.backend, OpenAIBackend)
