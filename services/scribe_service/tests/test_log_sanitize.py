import pytest

from services.scribe_service.common.context import set_context
from services.scribe_service.common.log_calls import log_calls
from services.scribe_service.common.sanitize import safe_error_message, sanitize_value
from services.scribe_service.src.logging import jlog
from services.scribe_service.src.schemas import TranscriptionSegment


def test_sensitive_keys_are_hashed():
    value = sanitize_value("transcript", "SSN 123-45-6789")
    assert value.startswith("sha256=")
    assert "6789" not in value


def test_short_strings_are_redacted():
    assert sanitize_value("note", "SSN 123-45-6789") == "SSN [SSN-REDACTED]"
    assert sanitize_value("duration_seconds", 90) == 90


def test_structured_values_are_summarized():
    segment = TranscriptionSegment(speaker="speaker_1", text="My SSN is 123-45-6789", start=0, end=1)
    assert sanitize_value("segments", [segment, segment, segment]) == "list:3"
    assert sanitize_value("audio", b"abcd") == "bytes:4"
    assert sanitize_value("segment", segment) == "<TranscriptionSegment>"
    assert sanitize_value("options", {"live": True, "api_key": "sk"})["live"] is True


def test_safe_error_message():
    assert "[EMAIL-REDACTED]" in safe_error_message(ValueError("bad address jane@example.com"))
    assert safe_error_message(RuntimeError()) == "RuntimeError"
    assert len(safe_error_message(ValueError("x" * 2000))) == 500


def test_jlog_carries_request_context(log_events):
    set_context("corr-123", "enc-9")
    try:
        jlog(event="unit_test", value=1)
    finally:
        set_context(None, None)

    [event] = log_events("unit_test")
    assert event["correlation_id"] == "corr-123"
    assert event["encounter_id"] == "enc-9"
    assert event["severity"] == "INFO"
    assert event["value"] == 1


@pytest.mark.anyio
async def test_log_calls_redacts_failures(log_events):
    @log_calls("lookup")
    async def lookup(transcript_text, live=False):
        raise ValueError("patient phone 555-123-4567 not found")

    with pytest.raises(ValueError):
        await lookup("Patient SSN 123-45-6789", live=True)

    [start] = log_events("call_start")
    assert start["fn"] == "lookup"
    assert start["args"]["live"] is True
    assert start["args"]["transcript_text"].startswith("sha256=")

    [error] = log_events("call_error")
    assert error["severity"] == "ERROR"
    assert "[PHONE-REDACTED]" in error["error"]
    assert "555-123-4567" not in error["error"]


def test_log_calls_sync_function(log_events):
    @log_calls()
    def add(a, b):
        return a + b

    assert add(2, 3) == 5
    [end] = log_events("call_end")
    assert end["fn"] == "add"
    assert end["ret"] == 5
