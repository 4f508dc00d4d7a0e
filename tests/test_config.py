import pytest
from pydantic import ValidationError

from promptgraph.config import ModelBackend, Settings, get_settings, reset_settings_cache


def test_defaults():
    settings = Settings()

    assert settings.model_backend == ModelBackend.OPENAI
    assert settings.model_name == "gpt-4o"
    assert settings.model_temperature == 0.7
    assert settings.workflow_max_steps == 100
    assert settings.quality_threshold == 6
    assert settings.quality_medium_threshold == 4
    assert settings.quality_max_retries == 3


def test_from_env_reads_environment(monkeypatch):
    monkeypatch.setenv("MODEL_BACKEND", "STUB")
    monkeypatch.setenv("WORKFLOW_MAX_STEPS", "12")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://example.com, https://demo.local")

    settings = Settings.from_env()

    assert settings.model_backend == ModelBackend.STUB
    assert settings.workflow_max_steps == 12
    assert settings.cors_allow_origins == ["https://example.com", "https://demo.local"]


def test_from_env_reads_dotenv_file(monkeypatch, tmp_path):
    monkeypatch.delenv("MODEL_NAME", raising=False)
    (tmp_path / ".env").write_text("MODEL_NAME=gpt-4o-mini\n")
    monkeypatch.chdir(tmp_path)

    assert Settings.from_env().model_name == "gpt-4o-mini"


def test_environment_wins_over_dotenv(monkeypatch, tmp_path):
    (tmp_path / ".env").write_text("MODEL_NAME=from-file\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MODEL_NAME", "from-env")

    assert Settings.from_env().model_name == "from-env"


def test_empty_medium_threshold_disables_it(monkeypatch):
    monkeypatch.setenv("QUALITY_MEDIUM_THRESHOLD", "")

    assert Settings.from_env().quality_medium_threshold is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"model_temperature": 3.0},
        {"llm_timeout_seconds": 0},
        {"workflow_max_steps": 0},
        {"quality_max_retries": -1},
        {"quality_threshold": 4, "quality_medium_threshold": 5},
        {"model_backend": "anthropic"},
    ],
)
def test_invalid_settings_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_get_settings_is_cached(monkeypatch):
    first = get_settings()
    monkeypatch.setenv("MODEL_NAME", "changed")

    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().model_name == "changed"
