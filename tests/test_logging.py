import structlog

from promptgraph.logging import (
    _scrub_secrets,
    _stream_factory,
    get_correlation_id,
    get_logger,
    log_to_stderr,
    sanitize_error_message,
    sanitize_workflow_trace,
    set_correlation_id,
)


def test_set_correlation_id_generates_when_missing():
    cid = set_correlation_id()

    assert cid
    assert get_correlation_id() == cid
    assert set_correlation_id("fixed") == "fixed"


def test_scrub_secrets_masks_credential_fields():
    event = _scrub_secrets(
        None, "info", {"openai_api_key": "sk-1234567890", "node": "a", "output_keys": ["x"]}
    )

    assert event["openai_api_key"] == "[redacted]"
    assert event["node"] == "a"
    assert event["output_keys"] == ["x"]


def test_scrub_secrets_cleans_error_text_and_trace_entries():
    trace = [
        {"node": "a", "status": "ok"},
        {"node": "b", "status": "error", "error": "api_key=sk-abcdefghijk"},
    ]

    event = _scrub_secrets(
        None,
        "error",
        {"error": "rejected: sk-abcdefghijk", "trace": trace, "error_type": "APIError"},
    )

    assert "sk-abcdefghijk" not in event["error"]
    assert "sk-abcdefghijk" not in event["trace"][1]["error"]
    assert event["trace"][0] == {"node": "a", "status": "ok"}
    assert event["error_type"] == "APIError"
    assert trace[1]["error"] == "api_key=sk-abcdefghijk"


def test_log_to_stderr_keeps_stdout_clean(capsys):
    try:
        log_to_stderr()
        get_logger("test").error("stream_check", node="a")
    finally:
        structlog.configure(logger_factory=_stream_factory("stdout"))

    captured = capsys.readouterr()
    assert "stream_check" in captured.err
    assert "stream_check" not in captured.out


def test_sanitize_error_message_strips_secrets_and_paths():
    message = sanitize_error_message(
        "failed reading /home/dev/.env with api_key=sk-abcdefghijk"
    )

    assert "/home/dev" not in message
    assert "sk-abcdefghijk" not in message
    assert "[redacted]" in message


def test_sanitize_error_message_caps_length():
    assert len(sanitize_error_message("x" * 1000)) == 500
    assert sanitize_error_message("") == "An error occurred"


def test_sanitize_workflow_trace_keeps_summary_fields():
    trace = [
        {"node": "a", "status": "ok", "duration_ms": 3, "output_keys": ["x"], "next": "b"},
        {"node": "b", "status": "error", "duration_ms": 1, "error": "token=abc123"},
        "not-an-entry",
    ]

    sanitized = sanitize_workflow_trace(trace)

    assert sanitized[0] == {
        "node": "a",
        "status": "ok",
        "duration_ms": 3,
        "output_keys": ["x"],
    }
    assert "abc123" not in sanitized[1]["error"]
    assert len(sanitized) == 2
