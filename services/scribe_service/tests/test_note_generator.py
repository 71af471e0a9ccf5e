import json
from datetime import date

import httpx
import pytest

from services.scribe_service.src.prompt import system_prompt
from services.scribe_service.src.providers import select_note_providers
from services.scribe_service.src.retry import RetryExecutor
from services.scribe_service.src.schemas import NoteTemplateConfig, PatientContext, TranscriptionSegment
from services.scribe_service.src.service import ClinicalNoteGenerator

TODAY = date(2025, 1, 10)
ANTHROPIC = "api.anthropic.com"
OPENAI = "api.openai.com"

TRANSCRIPT = (
    "What brings you in? "
    "My SSN is 123-45-6789, call 555-123-4567 or email jane@example.com. "
    "I have an itchy rash since I switched to a new detergent."
)
SEGMENTS = [
    TranscriptionSegment(speaker="speaker_0", text="What brings you in?", start=0, end=2),
    TranscriptionSegment(
        speaker="speaker_1",
        text="My SSN is 123-45-6789, call 555-123-4567 or email jane@example.com. "
             "I have an itchy rash since I switched to a new detergent.",
        start=2,
        end=9,
    ),
]
PROVIDER_NOTE = {
    "chiefComplaint": "Pruritic rash on forearms x 2 weeks",
    "hpi": "Rash began after a detergent change.",
    "ros": "Skin positive for rash.",
    "physicalExam": "Erythematous patches on bilateral forearms.",
    "assessment": "Allergic contact dermatitis.",
    "plan": "Triamcinolone 0.1% cream BID.",
    "differentialDiagnoses": [
        {"condition": "Allergic contact dermatitis", "confidence": 0.8, "icd10Code": "L23.9"},
        {"condition": "Irritant contact dermatitis", "confidence": 0.4, "icd10Code": "L24.9"},
    ],
}


def anthropic_reply(text):
    return lambda request: httpx.Response(200, json={"content": [{"type": "text", "text": text}]})


def openai_reply(text):
    return lambda request: httpx.Response(200, json={
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-4o",
        "choices": [{"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": text}}],
    })


class FakeUpstream:
    """Routes requests by host and records them."""

    def __init__(self, anthropic=None, openai=None):
        self.handlers = {ANTHROPIC: anthropic, OPENAI: openai}
        self.requests = {ANTHROPIC: [], OPENAI: []}
        self.transport = httpx.MockTransport(self)

    def __call__(self, request):
        self.requests[request.url.host].append(request)
        return self.handlers[request.url.host](request)


def _generator(settings, upstream, sleep):
    return ClinicalNoteGenerator(
        settings,
        executor=RetryExecutor(sleep=sleep),
        transport=upstream.transport,
        today=lambda: TODAY,
    )


def test_provider_selection_follows_configured_order(make_settings):
    both = make_settings(anthropic_api_key="a", openai_api_key="o", note_provider_order=["openai", "bogus", "anthropic"])
    assert [p.name for p in select_note_providers(both)] == ["openai", "anthropic", "mock"]
    assert [p.name for p in select_note_providers(make_settings(openai_api_key="o"))] == ["openai", "mock"]
    assert [p.name for p in select_note_providers(make_settings())] == ["mock"]


@pytest.mark.anyio
async def test_anthropic_receives_only_masked_text(make_settings, fake_sleep):
    upstream = FakeUpstream(anthropic=anthropic_reply(json.dumps(PROVIDER_NOTE)))
    generator = _generator(make_settings(anthropic_api_key="sk-ant"), upstream, fake_sleep)

    note = await generator.generate(TRANSCRIPT, SEGMENTS)

    [request] = upstream.requests[ANTHROPIC]
    body = json.loads(request.content)
    prompt = body["messages"][0]["content"]
    assert request.url.path == "/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant"
    assert request.headers["anthropic-version"] == "2023-06-01"
    assert body["model"] == "claude-3-5-sonnet-20241022"
    assert body["system"] == system_prompt
    assert "***-**-****" in prompt
    assert "***-***-****" in prompt
    assert "[EMAIL REDACTED]" in prompt
    for raw in ("123-45-6789", "555-123-4567", "jane@example.com"):
        assert raw not in prompt

    assert note.provider == "anthropic"
    assert note.chief_complaint == "Pruritic rash on forearms x 2 weeks"
    assert [d.icd10_code for d in note.differential_diagnoses] == ["L23.9", "L24.9"]
    assert sum(d.confidence for d in note.differential_diagnoses) == pytest.approx(1.0)
    assert note.patient_summary.your_concerns[:2] == ["Rash", "Itching"]


@pytest.mark.anyio
async def test_openai_chat_completion(make_settings, fake_sleep):
    fenced = "```json\n" + json.dumps(PROVIDER_NOTE) + "\n```"
    upstream = FakeUpstream(openai=openai_reply(fenced))
    generator = _generator(make_settings(openai_api_key="sk-oa"), upstream, fake_sleep)

    note = await generator.generate(TRANSCRIPT, SEGMENTS)

    [request] = upstream.requests[OPENAI]
    body = json.loads(request.content)
    assert request.url.path == "/v1/chat/completions"
    assert body["model"] == "gpt-4o"
    assert body["temperature"] == 0.3
    assert body["max_tokens"] == 4000
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    assert "***-**-****" in body["messages"][1]["content"]
    assert "123-45-6789" not in body["messages"][1]["content"]
    assert note.provider == "openai"


@pytest.mark.anyio
async def test_failing_provider_falls_through_to_next(make_settings, fake_sleep, log_events):
    upstream = FakeUpstream(
        anthropic=lambda request: httpx.Response(500, text="upstream echoed 123-45-6789"),
        openai=openai_reply(json.dumps(PROVIDER_NOTE)),
    )
    generator = _generator(make_settings(anthropic_api_key="a", openai_api_key="o"), upstream, fake_sleep)

    note = await generator.generate(TRANSCRIPT, SEGMENTS)

    assert len(upstream.requests[ANTHROPIC]) == 3
    assert len(fake_sleep.delays) == 2
    assert len(upstream.requests[OPENAI]) == 1
    assert note.provider == "openai"

    [failed] = log_events("note_provider_failed")
    assert failed["provider"] == "anthropic"
    assert failed["severity"] == "WARNING"
    assert "[SSN-REDACTED]" in failed["error"]
    assert "123-45-6789" not in json.dumps(log_events())


@pytest.mark.anyio
async def test_client_error_is_not_retried(make_settings, fake_sleep):
    upstream = FakeUpstream(
        anthropic=lambda request: httpx.Response(401, json={"error": "invalid x-api-key"}),
        openai=openai_reply(json.dumps(PROVIDER_NOTE)),
    )
    generator = _generator(make_settings(anthropic_api_key="bad", openai_api_key="o"), upstream, fake_sleep)

    note = await generator.generate(TRANSCRIPT, SEGMENTS)

    assert len(upstream.requests[ANTHROPIC]) == 1
    assert fake_sleep.delays == []
    assert note.provider == "openai"


@pytest.mark.anyio
async def test_all_providers_failing_ends_in_mock(make_settings, fake_sleep):
    upstream = FakeUpstream(
        anthropic=lambda request: httpx.Response(503, text="overloaded"),
        openai=lambda request: httpx.Response(502, json={"error": {"message": "bad gateway"}}),
    )
    generator = _generator(make_settings(anthropic_api_key="a", openai_api_key="o"), upstream, fake_sleep)

    note = await generator.generate(TRANSCRIPT, SEGMENTS)

    assert len(upstream.requests[ANTHROPIC]) == 3
    assert len(upstream.requests[OPENAI]) == 3
    assert note.provider == "mock"
    assert note.differential_diagnoses[0].icd10_code == "L23.9"


@pytest.mark.anyio
@pytest.mark.parametrize("reply", ["I cannot help with that.", "", '{"chiefComplaint": 42}'])
async def test_unusable_output_goes_straight_to_mock(make_settings, fake_sleep, log_events, reply):
    upstream = FakeUpstream(anthropic=anthropic_reply(reply), openai=openai_reply(json.dumps(PROVIDER_NOTE)))
    generator = _generator(make_settings(anthropic_api_key="a", openai_api_key="o"), upstream, fake_sleep)

    note = await generator.generate(TRANSCRIPT, SEGMENTS)

    assert len(upstream.requests[ANTHROPIC]) == 1
    assert upstream.requests[OPENAI] == []
    assert note.provider == "mock"
    assert log_events("note_parse_failed")[0]["provider"] == "anthropic"


@pytest.mark.anyio
async def test_no_keys_uses_mock(settings, log_events):
    generator = ClinicalNoteGenerator(settings, today=lambda: TODAY)

    note = await generator.generate(TRANSCRIPT, SEGMENTS)

    assert note.provider == "mock"
    assert log_events("note_mock")[0]["reason"] == "no_api_key"
    assert note.chief_complaint == "Pruritic rash on bilateral arms x 2 weeks"
    assert "Rash" in note.patient_summary.your_concerns
    assert 0.01 <= note.overall_confidence <= 0.99


@pytest.mark.anyio
async def test_template_shapes_request_and_note(make_settings, fake_sleep):
    reply = dict(PROVIDER_NOTE, impression="Likely allergic contact dermatitis")
    upstream = FakeUpstream(anthropic=anthropic_reply(json.dumps(reply)))
    generator = _generator(make_settings(anthropic_api_key="a"), upstream, fake_sleep)
    template = NoteTemplateConfig(
        ai_model="claude-3-haiku-20240307",
        system_prompt="You write brief dermatology notes.",
        temperature=0.1,
        max_tokens=1000,
        note_sections=["chiefComplaint", "hpi", "assessment", "plan", "impression"],
        task_templates=[{"task": "Check patch test results", "daysFromVisit": 3}],
    )
    context = PatientContext(patient_name="Jane Doe", patient_age=41, chief_complaint="Rash, per Jane")

    note = await generator.generate(
        "Jane Doe here. My rash itches.",
        [TranscriptionSegment(speaker="speaker_1", text="Jane Doe here. My rash itches.", start=0, end=3)],
        template=template,
        patient_context=context,
    )

    body = json.loads(upstream.requests[ANTHROPIC][0].content)
    prompt = body["messages"][0]["content"]
    assert body["model"] == "claude-3-haiku-20240307"
    assert body["system"] == "You write brief dermatology notes."
    assert body["temperature"] == 0.1
    assert body["max_tokens"] == 1000
    assert "Jane" not in prompt
    assert "for [PATIENT], age 41" in prompt
    assert "CHIEF COMPLAINT: Rash, per [PATIENT]" in prompt
    assert note.custom_sections == {"impression": "Likely allergic contact dermatitis"}
    assert note.follow_up_tasks[-1].task == "Check patch test results"
    assert note.follow_up_tasks[-1].due_date == "2025-01-13"


@pytest.mark.anyio
async def test_claude_template_model_is_not_sent_to_openai(make_settings, fake_sleep):
    def openai_handler(request):
        if json.loads(request.content)["model"].startswith("claude"):
            return httpx.Response(404, json={"error": {"message": "model not found"}})
        return openai_reply(json.dumps(PROVIDER_NOTE))(request)

    upstream = FakeUpstream(
        anthropic=lambda request: httpx.Response(503, text="overloaded"),
        openai=openai_handler,
    )
    generator = _generator(
        make_settings(anthropic_api_key="a", openai_api_key="o", openai_note_model="gpt-4o-mini"),
        upstream,
        fake_sleep,
    )
    template = NoteTemplateConfig(ai_model="claude-3-5-sonnet-20241022")

    note = await generator.generate(TRANSCRIPT, SEGMENTS, template=template)

    assert {json.loads(r.content)["model"] for r in upstream.requests[ANTHROPIC]} == {"claude-3-5-sonnet-20241022"}
    assert [json.loads(r.content)["model"] for r in upstream.requests[OPENAI]] == ["gpt-4o-mini"]
    assert note.provider == "openai"


@pytest.mark.anyio
async def test_non_claude_template_model_is_not_sent_to_anthropic(make_settings, fake_sleep):
    upstream = FakeUpstream(
        anthropic=anthropic_reply(json.dumps(PROVIDER_NOTE)),
        openai=openai_reply(json.dumps(PROVIDER_NOTE)),
    )
    generator = _generator(make_settings(anthropic_api_key="a"), upstream, fake_sleep)

    await generator.generate(TRANSCRIPT, SEGMENTS, template=NoteTemplateConfig(ai_model="gpt-4.1"))

    assert json.loads(upstream.requests[ANTHROPIC][0].content)["model"] == "claude-3-5-sonnet-20241022"


@pytest.mark.anyio
async def test_exported_base_url_does_not_redirect_requests(make_settings, fake_sleep, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_BASE_URL", "https://llm-proxy.internal")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://llm-proxy.internal/v1")
    upstream = FakeUpstream(anthropic=anthropic_reply(json.dumps(PROVIDER_NOTE)))
    generator = _generator(make_settings(anthropic_api_key="a"), upstream, fake_sleep)

    note = await generator.generate(TRANSCRIPT, SEGMENTS)

    assert len(upstream.requests[ANTHROPIC]) == 1
    assert note.provider == "anthropic"


@pytest.mark.anyio
async def test_truncated_body_is_retried(make_settings, fake_sleep):
    replies = iter([
        httpx.Response(200, text='{"content": [{"type": "te'),
        anthropic_reply(json.dumps(PROVIDER_NOTE))(None),
    ])
    upstream = FakeUpstream(anthropic=lambda request: next(replies))
    generator = _generator(make_settings(anthropic_api_key="a"), upstream, fake_sleep)

    note = await generator.generate(TRANSCRIPT, SEGMENTS)

    assert len(upstream.requests[ANTHROPIC]) == 2
    assert len(fake_sleep.delays) == 1
    assert note.provider == "anthropic"
