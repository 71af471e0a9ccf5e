import random

import anyio
import pytest

from services.scribe_service import main, otel
from services.scribe_service.src.phi import mask_phi
from services.scribe_service.src.service import build_pipeline


@pytest.mark.anyio
async def test_mock_visit_end_to_end(settings):
    pipeline = build_pipeline(settings, rng=random.Random(11))

    result = await pipeline.run("visit.webm", 90)
    note = result.note

    assert result.transcription.provider == "mock"
    assert result.transcription.duration == 90
    assert result.masked_transcript == mask_phi(result.transcription.text, result.transcription.phi_entities)
    assert note.provider == "mock"
    assert note.differential_diagnoses[0].icd10_code == "L23.9"
    assert sum(d.confidence for d in note.differential_diagnoses) == pytest.approx(1.0)
    assert [a.allergen for a in note.allergies] == ["Penicillin"]
    assert [m.name for m in note.medications] == ["Triamcinolone acetonide", "Cetirizine"]
    assert {t.priority for t in note.follow_up_tasks} == {"medium", "high"}
    assert "Rash" in note.patient_summary.your_concerns
    assert "Fever" not in note.patient_summary.your_concerns
    assert note.suggested_cpt[0].code == "99213"


@pytest.mark.anyio
async def test_process_recording_returns_camel_case_payload(settings, monkeypatch):
    monkeypatch.setattr(main, "pipeline", build_pipeline(settings))

    payload = await main.process_recording("visit.wav", 45, encounter_id="enc-1")

    assert payload["transcription"]["provider"] == "mock"
    assert payload["transcription"]["speakerCount"] == 2
    assert "maskedTranscript" in payload
    note = payload["note"]
    assert note["chiefComplaint"]
    assert note["sectionConfidence"]["physicalExam"] > 0
    assert note["differentialDiagnoses"][0]["icd10Code"] == "L23.9"
    assert note["patientSummary"]["yourConcerns"]


@pytest.mark.anyio
async def test_detergent_scenario_from_text(settings):
    transcript = (
        "I've had a rash for two weeks since I used a new detergent. "
        "No fever. I'm allergic to penicillin."
    )
    pipeline = build_pipeline(settings)

    note = await pipeline.generate_note(transcript, [])

    assert "L23.9" in note.assessment
    assert [a.allergen for a in note.allergies] == ["Penicillin"]
    assert "Rash" in note.patient_summary.your_concerns
    assert "Fever" not in note.patient_summary.your_concerns


def test_mock_delay_override(make_settings):
    rng = random.Random(1)
    assert make_settings(ambient_ai_mock_delay_ms=0).mock_delay_s(rng, 2000, 3000) == 0
    assert make_settings(ambient_ai_mock_delay_ms=150).mock_delay_s(rng, 2000, 3000) == 0.15
    assert 2.0 <= make_settings(ambient_ai_mock_delay_ms=None).mock_delay_s(rng, 2000, 3000) <= 3.0


@pytest.mark.anyio
async def test_zero_mock_delay_returns_promptly(settings):
    pipeline = build_pipeline(settings)

    with anyio.fail_after(1.5):
        result = await pipeline.run("visit.webm", 60)

    assert result.note.section_confidence.plan > 0


def test_init_tracing_installs_provider(monkeypatch):
    installed = []
    monkeypatch.setattr(otel.trace, "set_tracer_provider", installed.append)

    tracer = otel.init_tracing("scribe-test", service_version="v2")

    [provider] = installed
    assert provider.resource.attributes["service.name"] == "scribe-test"
    assert provider.resource.attributes["service.version"] == "v2"
    with tracer.start_as_current_span("scribe.test"):
        pass
    provider.shutdown()
