from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SpeakerRole = Literal["doctor", "patient"]
Urgency = Literal["routine", "soon", "urgent"]
TaskPriority = Literal["low", "medium", "high"]

SOAP_SECTIONS = [
    "chiefComplaint",
    "hpi",
    "ros",
    "physicalExam",
    "assessment",
    "plan",
]


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire (provider JSON and API payloads)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Transcription ----------

class TranscriptionSegment(CamelModel):
    speaker: str
    text: str
    start: float
    end: float
    confidence: float = 0.85


class SpeakerProfile(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    role: SpeakerRole
    display_name: Optional[str] = None


SpeakerInfo = Dict[str, SpeakerProfile]


class PHIEntity(CamelModel):
    type: str
    text: str
    start: int
    end: int
    masked_value: str


class TranscriptionResult(CamelModel):
    text: str
    segments: List[TranscriptionSegment] = Field(default_factory=list)
    speakers: SpeakerInfo = Field(default_factory=dict)
    speaker_count: int = 0
    confidence: float = 0.0
    word_count: int = 0
    phi_entities: List[PHIEntity] = Field(default_factory=list)
    language: str = "en"
    duration: float = 0.0
    provider: str = "mock"


# ---------- Clinical note ----------

class DifferentialDiagnosis(CamelModel):
    condition: str
    confidence: float
    reasoning: str = ""
    icd10_code: str = ""


class RecommendedTest(CamelModel):
    test_name: str
    rationale: str = ""
    urgency: Urgency = "routine"
    cpt_code: Optional[str] = None


class PatientSummary(CamelModel):
    what_we_discussed: str = ""
    your_concerns: List[str] = Field(default_factory=list)
    diagnosis: Optional[str] = None
    treatment_plan: str = ""
    follow_up: str = ""


class SectionConfidence(CamelModel):
    chief_complaint: float
    hpi: float
    ros: float
    physical_exam: float
    assessment: float
    plan: float


class CodeSuggestion(CamelModel):
    code: str
    description: str = ""
    confidence: float = 0.85


class Medication(CamelModel):
    name: str
    dosage: str = ""
    frequency: str = ""
    confidence: float = 0.85


class Allergy(CamelModel):
    allergen: str
    reaction: str = ""
    confidence: float = 0.85


class FollowUpTask(CamelModel):
    task: str
    priority: TaskPriority = "medium"
    due_date: Optional[str] = None
    confidence: float = 0.8


class ExtractedData(CamelModel):
    suggested_icd10: List[CodeSuggestion] = Field(default_factory=list)
    suggested_cpt: List[CodeSuggestion] = Field(default_factory=list)
    medications: List[Medication] = Field(default_factory=list)
    allergies: List[Allergy] = Field(default_factory=list)
    follow_up_tasks: List[FollowUpTask] = Field(default_factory=list)


class ClinicalNote(ExtractedData):
    chief_complaint: str = ""
    hpi: str = ""
    ros: str = ""
    physical_exam: str = ""
    assessment: str = ""
    plan: str = ""
    overall_confidence: float
    section_confidence: SectionConfidence
    differential_diagnoses: List[DifferentialDiagnosis] = Field(default_factory=list)
    recommended_tests: List[RecommendedTest] = Field(default_factory=list)
    patient_summary: PatientSummary = Field(default_factory=PatientSummary)
    custom_sections: Dict[str, str] = Field(default_factory=dict)
    provider: str = "mock"


# ---------- Configuration values ----------

class RetryConfig(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)


class CodeHint(CamelModel):
    code: str
    description: str = ""


class TaskTemplate(CamelModel):
    task: str
    priority: TaskPriority = "medium"
    days_from_visit: int = 7


class NoteTemplateConfig(CamelModel):
    """Per-practice agent configuration that shapes the note prompt and output."""
    name: str = "default"
    ai_model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    prompt_template: str = ""
    note_sections: List[str] = Field(default_factory=lambda: list(SOAP_SECTIONS))
    section_prompts: Dict[str, str] = Field(default_factory=dict)
    output_format: str = "soap"
    verbosity_level: str = "standard"
    include_codes: bool = True
    terminology_set: Dict[str, List[str]] = Field(default_factory=dict)
    focus_areas: List[str] = Field(default_factory=list)
    default_cpt_codes: List[CodeHint] = Field(default_factory=list)
    default_icd10_codes: List[CodeHint] = Field(default_factory=list)
    task_templates: List[TaskTemplate] = Field(default_factory=list)
    default_follow_up_interval: Optional[str] = None


class PatientContext(CamelModel):
    patient_name: Optional[str] = None
    patient_age: Optional[int] = None
    chief_complaint: Optional[str] = None
    relevant_history: Optional[str] = None


class PipelineResult(CamelModel):
    transcription: TranscriptionResult
    masked_transcript: str
    note: ClinicalNote
