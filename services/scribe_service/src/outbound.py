import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .phi import PHIDetector, get_detector, mask_phi
from .schemas import PatientContext, TranscriptionSegment

PATIENT_PLACEHOLDER = "[PATIENT]"


@dataclass
class SanitizedPayload:
    transcript: str
    segments: List[TranscriptionSegment]
    patient_context: Optional[PatientContext]
    redacted_fields: int


def _name_pattern(patient_name: str) -> Optional[re.Pattern]:
    parts = [p for p in re.split(r"\s+", patient_name.strip()) if len(p) > 1]
    if not parts:
        return None
    # Full name first so it collapses to one placeholder
    alternatives = [re.escape(" ".join(parts))] + [re.escape(p) for p in parts]
    return re.compile(r"\b(?:" + "|".join(alternatives) + r")\b", re.IGNORECASE)


class OutboundSanitizer:
    """Masks PHI in everything that is about to leave for a third-party model."""

    def __init__(self, detector: Optional[PHIDetector] = None):
        self._detector = detector or get_detector()

    def sanitize_text(self, text: str, patient_name: Optional[str] = None) -> str:
        if not text:
            return text
        masked = mask_phi(text, self._detector.detect(text))
        pattern = _name_pattern(patient_name) if patient_name else None
        return pattern.sub(PATIENT_PLACEHOLDER, masked) if pattern else masked

    def sanitize(
        self,
        transcript: str,
        segments: Sequence[TranscriptionSegment],
        patient_context: Optional[PatientContext] = None,
    ) -> SanitizedPayload:
        name = patient_context.patient_name if patient_context else None
        clean_transcript = self.sanitize_text(transcript, name)
        clean_segments = [
            seg.model_copy(update={"text": self.sanitize_text(seg.text, name)}) for seg in segments
        ]

        clean_context = None
        if patient_context is not None:
            clean_context = patient_context.model_copy(update={
                "patient_name": PATIENT_PLACEHOLDER if patient_context.patient_name else None,
                "chief_complaint": self.sanitize_text(patient_context.chief_complaint or "", name) or None,
                "relevant_history": self.sanitize_text(patient_context.relevant_history or "", name) or None,
            })

        redacted_fields = int(clean_transcript != transcript) + sum(
            int(a.text != b.text) for a, b in zip(segments, clean_segments)
        )
        return SanitizedPayload(clean_transcript, clean_segments, clean_context, redacted_fields)
