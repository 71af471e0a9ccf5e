from services.scribe_service.src.outbound import PATIENT_PLACEHOLDER, OutboundSanitizer
from services.scribe_service.src.schemas import PatientContext, TranscriptionSegment


def test_sanitize_masks_phi_and_patient_name():
    text = "I'm Jane Doe, SSN 123-45-6789."
    segment = TranscriptionSegment(speaker="speaker_1", text=text, start=0, end=2)
    context = PatientContext(patient_name="Jane Doe", patient_age=34, chief_complaint="Jane reports a rash")

    payload = OutboundSanitizer().sanitize(text, [segment], context)

    assert payload.transcript == "I'm [PATIENT], SSN ***-**-****."
    assert payload.segments[0].text == payload.transcript
    assert payload.patient_context.patient_name == PATIENT_PLACEHOLDER
    assert payload.patient_context.patient_age == 34
    assert payload.patient_context.chief_complaint == "[PATIENT] reports a rash"
    assert payload.redacted_fields == 2


def test_sanitize_leaves_inputs_untouched():
    text = "Reach me at 555-123-4567."
    segment = TranscriptionSegment(speaker="speaker_1", text=text, start=0, end=1)

    payload = OutboundSanitizer().sanitize(text, [segment])

    assert segment.text == text
    assert payload.transcript == "Reach me at ***-***-****."
    assert payload.patient_context is None


def test_clean_text_passes_through():
    text = "The rash started two weeks ago."
    payload = OutboundSanitizer().sanitize(text, [])

    assert payload.transcript == text
    assert payload.redacted_fields == 0


def test_name_match_is_case_insensitive_and_whole_word():
    sanitizer = OutboundSanitizer()
    assert sanitizer.sanitize_text("DOE said hi to jane", "Jane Doe") == "[PATIENT] said hi to [PATIENT]"
    assert sanitizer.sanitize_text("Janet came alone", "Jane Doe") == "Janet came alone"
