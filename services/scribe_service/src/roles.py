import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .schemas import SpeakerInfo, TranscriptionSegment

DOCTOR_TAGS = {"speaker_0", "doctor", "provider", "physician", "clinician", "dr", "md"}
PATIENT_TAGS = {"speaker_1", "patient", "pt", "client"}
DOCTOR_PREFIXES = ("dr.", "dr_", "doctor", "provider", "physician", "clinician")
PATIENT_PREFIXES = ("patient", "pt.", "pt_", "client")


@dataclass
class SpeakerStatements:
    doctor: List[str] = field(default_factory=list)
    patient: List[str] = field(default_factory=list)


def normalize_speaker_tag(tag: str) -> str:
    return re.sub(r"[\s-]+", "_", (tag or "").strip().lower())


def speaker_role(tag: str) -> Optional[str]:
    """Map a raw speaker tag to 'doctor' / 'patient', or None when it follows no known convention."""
    t = normalize_speaker_tag(tag)
    if t in DOCTOR_TAGS or t.startswith(DOCTOR_PREFIXES):
        return "doctor"
    if t in PATIENT_TAGS or t.startswith(PATIENT_PREFIXES):
        return "patient"
    return None


def classify_segments(
    segments: Sequence[TranscriptionSegment],
    speakers: Optional[SpeakerInfo] = None,
) -> SpeakerStatements:
    statements = SpeakerStatements()
    for seg in segments:
        profile = (speakers or {}).get(seg.speaker)
        role = profile.role if profile else speaker_role(seg.speaker)
        text = seg.text.strip()
        if role == "doctor" and text:
            statements.doctor.append(text)
        elif role == "patient" and text:
            statements.patient.append(text)

    # Unrecognized tags everywhere: assume the conversation alternates, provider first
    if not statements.doctor and not statements.patient:
        for i, seg in enumerate(segments):
            text = seg.text.strip()
            if text:
                (statements.doctor if i % 2 == 0 else statements.patient).append(text)
    return statements
