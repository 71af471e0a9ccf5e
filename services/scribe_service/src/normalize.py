import calendar
import json
import math
import re
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .exceptions import NoteParseError
from .mock_note import generate_differential_diagnoses, generate_recommended_tests
from .schemas import (
    Allergy,
    ClinicalNote,
    CodeSuggestion,
    DifferentialDiagnosis,
    FollowUpTask,
    Medication,
    NoteTemplateConfig,
    PatientSummary,
    RecommendedTest,
    SOAP_SECTIONS,
    SectionConfidence,
)

MIN_CONFIDENCE = 0.01
MAX_CONFIDENCE = 0.99
MAX_DIFFERENTIALS = 5
MAX_RECOMMENDED_TESTS = 5
DEFAULT_FOLLOW_UP_DAYS = 14
URGENCIES = ("routine", "soon", "urgent")
PRIORITIES = ("low", "medium", "high")

DEFAULT_SECTION_CONFIDENCE = {
    "chiefComplaint": 0.85,
    "hpi": 0.85,
    "ros": 0.80,
    "physicalExam": 0.85,
    "assessment": 0.85,
    "plan": 0.85,
}

CONCERN_KEYWORDS = [
    ("Rash", re.compile(r"\brash(?:es)?\b", re.I)),
    ("Itching", re.compile(r"\bitch(?:y|ing|es)?\b|\bprurit", re.I)),
    ("Pain", re.compile(r"\bpain(?:ful)?\b|\bhurts?\b", re.I)),
    ("Burning", re.compile(r"\bburn(?:s|ing)?\b", re.I)),
    ("Redness", re.compile(r"\bred(?:ness)?\b|\berythem", re.I)),
    ("Swelling", re.compile(r"\bswell(?:s|ing|ed)?\b|\bswollen\b", re.I)),
    ("Scaling", re.compile(r"\bscal(?:y|ing)\b|\bflak(?:y|ing)\b", re.I)),
    ("Bleeding", re.compile(r"\bbleed(?:s|ing)?\b", re.I)),
    ("Blistering", re.compile(r"\bblister(?:s|ing|ed)?\b", re.I)),
    ("Drainage", re.compile(r"\bdrain(?:s|age|ing)?\b|\booz(?:e|ing)\b", re.I)),
    ("Fever", re.compile(r"\bfevers?\b|\bfebrile\b", re.I)),
]
# "no fever", "denies fever, chills, joint pain"
_NEGATED = re.compile(r"\b(?:no|not|denies|denied|without|negative\s+for)\b(?:\W+\w+){0,3}\W*$", re.I)
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+|\n+")
_INTERVAL = re.compile(r"(\d+)(?:\s*-\s*(\d+))?\s*(day|week|month)s?", re.I)
# Splits before each capital only, so "icd10Code" becomes "icd10_code"
_CAMEL_HUMP = re.compile(r"(?<!^)(?=[A-Z])")


# ---------- Parse ----------

def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    cleaned = re.sub(r"^```[A-Za-z]*\s*", "", cleaned)
    cleaned = re.sub(r"\s*```$", "", cleaned)
    return cleaned.strip()


def parse_note_json(text: str, sections: Iterable[str] = SOAP_SECTIONS) -> Dict[str, Any]:
    """Provider text -> raw note dict, or NoteParseError when it is not a usable note."""
    if not text or not text.strip():
        raise NoteParseError("Empty note response")

    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise NoteParseError(f"Non-JSON note response: {e}") from e
        try:
            data = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as inner:
            raise NoteParseError(f"Non-JSON note response: {inner}") from inner

    if not isinstance(data, dict):
        raise NoteParseError("Note response is not a JSON object")

    expected = list(dict.fromkeys([*SOAP_SECTIONS, *sections]))
    present = [key for key in expected if _pick(data, key) is not None]
    for key in present:
        if not isinstance(_pick(data, key), str):
            raise NoteParseError(f"Section '{key}' is not text")
    if not any(_pick(data, key).strip() for key in present):
        raise NoteParseError("Note response has no section content")
    return data


# ---------- Coercion helpers ----------

def _pick(raw: Mapping[str, Any], key: str) -> Any:
    if key in raw:
        return raw[key]
    return raw.get(_CAMEL_HUMP.sub("_", key).lower())


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def coerce_confidence(value: Any, default: float) -> float:
    """Accept 0.85, 85, "85%" or "0.85"; anything unreadable becomes the default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        raw = value.strip()
        try:
            number = float(raw.rstrip("%").strip())
        except ValueError:
            return default
        if raw.endswith("%"):
            number /= 100
    elif isinstance(value, (int, float)):
        number = float(value)
    else:
        return default

    if math.isnan(number) or math.isinf(number):
        return default
    if 1 < number <= 100:
        number /= 100
    return min(max(number, MIN_CONFIDENCE), MAX_CONFIDENCE)


def _iso_date(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10]).isoformat()
    except ValueError:
        return None


def _add_months(day: date, months: int) -> date:
    years, month_index = divmod(day.month - 1 + months, 12)
    year, month = day.year + years, month_index + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def follow_up_due_date(interval: str, today: date) -> date:
    """'4-6 weeks' -> today + 4 weeks (lower bound); unreadable -> 14 days."""
    match = _INTERVAL.search(interval or "")
    if not match:
        return today + timedelta(days=DEFAULT_FOLLOW_UP_DAYS)
    amount, unit = int(match.group(1)), match.group(3).lower()
    if unit == "day":
        return today + timedelta(days=amount)
    if unit == "week":
        return today + timedelta(weeks=amount)
    return _add_months(today, amount)


# ---------- Sections ----------

def normalize_differentials(items: Any, transcript: str) -> List[DifferentialDiagnosis]:
    """Dedupe, keep the top five, fill from rules when empty, re-weight to sum to 1."""

    def clean(candidates: Any) -> List[Dict[str, Any]]:
        # Case-insensitive duplicates keep the highest-confidence entry
        best: Dict[str, Dict[str, Any]] = {}
        for item in _list(candidates):
            condition = _text(_pick(item, "condition")).strip()
            if not condition:
                continue
            entry = {
                "condition": condition,
                "confidence": coerce_confidence(_pick(item, "confidence"), 0.5),
                "reasoning": _text(_pick(item, "reasoning")).strip(),
                "icd10_code": _text(_pick(item, "icd10Code")).strip(),
            }
            current = best.get(condition.casefold())
            if current is None or entry["confidence"] > current["confidence"]:
                best[condition.casefold()] = entry
        kept = sorted(best.values(), key=lambda d: d["confidence"], reverse=True)
        return kept[:MAX_DIFFERENTIALS]

    kept = clean(items) or clean(generate_differential_diagnoses(transcript))
    if not kept:
        return []

    total = sum(d["confidence"] for d in kept)
    return [DifferentialDiagnosis(**{**d, "confidence": d["confidence"] / total}) for d in kept]


def normalize_recommended_tests(items: Any, transcript: str) -> List[RecommendedTest]:

    def clean(candidates: Any) -> List[RecommendedTest]:
        seen = set()
        kept = []
        for item in _list(candidates):
            name = _text(_pick(item, "testName")).strip()
            if not name or name.casefold() in seen:
                continue
            seen.add(name.casefold())
            urgency = _text(_pick(item, "urgency")).strip().lower()
            cpt = _text(_pick(item, "cptCode")).strip()
            kept.append(RecommendedTest(
                test_name=name,
                rationale=_text(_pick(item, "rationale")).strip(),
                urgency=urgency if urgency in URGENCIES else "routine",
                cpt_code=cpt or None,
            ))
        return kept[:MAX_RECOMMENDED_TESTS]

    return clean(items) or clean(generate_recommended_tests(transcript))


def normalize_follow_up_tasks(items: Any) -> List[FollowUpTask]:
    tasks = []
    for item in _list(items):
        task = _text(_pick(item, "task")).strip()
        if not task:
            continue
        priority = _text(_pick(item, "priority")).strip().lower()
        tasks.append(FollowUpTask(
            task=task,
            priority=priority if priority in PRIORITIES else "medium",
            due_date=_iso_date(_pick(item, "dueDate")),
            confidence=coerce_confidence(_pick(item, "confidence"), 0.8),
        ))
    return tasks


def _codes(items: Any) -> List[CodeSuggestion]:
    return [
        CodeSuggestion(
            code=_text(_pick(item, "code")).strip(),
            description=_text(_pick(item, "description")).strip(),
            confidence=coerce_confidence(_pick(item, "confidence"), 0.85),
        )
        for item in _list(items)
        if _text(_pick(item, "code")).strip()
    ]


def _medications(items: Any) -> List[Medication]:
    return [
        Medication(
            name=_text(_pick(item, "name")).strip(),
            dosage=_text(_pick(item, "dosage")).strip(),
            frequency=_text(_pick(item, "frequency")).strip(),
            confidence=coerce_confidence(_pick(item, "confidence"), 0.85),
        )
        for item in _list(items)
        if _text(_pick(item, "name")).strip()
    ]


def _allergies(items: Any) -> List[Allergy]:
    return [
        Allergy(
            allergen=_text(_pick(item, "allergen")).strip(),
            reaction=_text(_pick(item, "reaction")).strip(),
            confidence=coerce_confidence(_pick(item, "confidence"), 0.85),
        )
        for item in _list(items)
        if _text(_pick(item, "allergen")).strip()
    ]


# ---------- Patient summary ----------

def derive_concerns(*texts: str) -> List[str]:
    """Symptom keywords the patient actually reported; questions and negated mentions are skipped."""
    found = set()
    for text in texts:
        for sentence in _SENTENCE_BREAK.split(text or ""):
            sentence = sentence.strip()
            if not sentence or sentence.endswith("?"):
                continue
            for label, pattern in CONCERN_KEYWORDS:
                if label in found:
                    continue
                if any(not _NEGATED.search(sentence[:m.start()]) for m in pattern.finditer(sentence)):
                    found.add(label)
    return [label for label, _ in CONCERN_KEYWORDS if label in found]


def _first_clause(text: str) -> str:
    return re.split(r"[,;.]|\band\b", text, maxsplit=1)[0].strip()


def normalize_patient_summary(
    raw: Any,
    chief_complaint: str,
    hpi: str,
    transcript: str,
    follow_up_tasks: List[FollowUpTask],
    differentials: List[DifferentialDiagnosis],
) -> PatientSummary:
    raw = raw if isinstance(raw, dict) else {}

    concerns = derive_concerns(chief_complaint, hpi, transcript)
    if not concerns:
        supplied = _pick(raw, "yourConcerns")
        seen = set()
        for item in supplied if isinstance(supplied, list) else []:
            concern = _text(item).strip()
            if concern and concern.casefold() not in seen:
                seen.add(concern.casefold())
                concerns.append(concern)
    if not concerns and _first_clause(chief_complaint):
        concerns = [_first_clause(chief_complaint)]

    discussed = _text(_pick(raw, "whatWeDiscussed")).strip()
    if not discussed:
        discussed = (
            f"We talked about your {chief_complaint[0].lower()}{chief_complaint[1:].rstrip('.')}."
            if chief_complaint else "We talked about the concerns that brought you in today."
        )

    diagnosis = _text(_pick(raw, "diagnosis")).strip() or None
    if diagnosis is None and differentials:
        diagnosis = f"The most likely cause is {differentials[0].condition.lower()}."

    treatment = _text(_pick(raw, "treatmentPlan")).strip() or (
        "Follow the treatment plan your care team reviewed with you today."
    )

    follow_up = _text(_pick(raw, "followUp")).strip()
    due_dates = sorted(t.due_date for t in follow_up_tasks if t.due_date)
    if due_dates and due_dates[0] not in follow_up:
        earliest = due_dates[0]
        follow_up = f"{follow_up} Next follow-up is due by {earliest}.".strip() if follow_up else (
            f"Please schedule your follow-up visit by {earliest}."
        )
    elif not follow_up:
        follow_up = "Follow up as directed by your care team."

    return PatientSummary(
        what_we_discussed=discussed,
        your_concerns=concerns,
        diagnosis=diagnosis,
        treatment_plan=treatment,
        follow_up=follow_up,
    )


# ---------- Note ----------

def normalize_note(
    raw: Mapping[str, Any],
    *,
    transcript: str,
    template: Optional[NoteTemplateConfig] = None,
    today: Optional[date] = None,
    provider: str = "mock",
) -> ClinicalNote:
    """Force a loosely-shaped provider note into the ClinicalNote contract."""
    today = today or date.today()
    sections = {key: _text(_pick(raw, key)) for key in SOAP_SECTIONS}

    confidences = _pick(raw, "sectionConfidence")
    confidences = confidences if isinstance(confidences, dict) else {}
    section_confidence = {
        key: coerce_confidence(_pick(confidences, key), DEFAULT_SECTION_CONFIDENCE[key]) for key in SOAP_SECTIONS
    }

    tasks = normalize_follow_up_tasks(_pick(raw, "followUpTasks"))
    custom_sections: Dict[str, str] = {}
    if template is not None:
        for section in template.note_sections:
            value = _pick(raw, section)
            if section not in SOAP_SECTIONS and isinstance(value, str) and value.strip():
                custom_sections[section] = value
        if template.default_follow_up_interval and not tasks:
            tasks.append(FollowUpTask(
                task=f"Schedule follow-up in {template.default_follow_up_interval}",
                priority="medium",
                due_date=follow_up_due_date(template.default_follow_up_interval, today).isoformat(),
                confidence=0.8,
            ))
        for task_template in template.task_templates:
            tasks.append(FollowUpTask(
                task=task_template.task,
                priority=task_template.priority,
                due_date=(today + timedelta(days=task_template.days_from_visit)).isoformat(),
                confidence=0.85,
            ))

    differentials = normalize_differentials(_pick(raw, "differentialDiagnoses"), transcript)
    summary = normalize_patient_summary(
        _pick(raw, "patientSummary"),
        chief_complaint=sections["chiefComplaint"],
        hpi=sections["hpi"],
        transcript=transcript,
        follow_up_tasks=tasks,
        differentials=differentials,
    )

    return ClinicalNote(
        chief_complaint=sections["chiefComplaint"],
        hpi=sections["hpi"],
        ros=sections["ros"],
        physical_exam=sections["physicalExam"],
        assessment=sections["assessment"],
        plan=sections["plan"],
        overall_confidence=sum(section_confidence.values()) / len(section_confidence),
        section_confidence=SectionConfidence(**section_confidence),
        differential_diagnoses=differentials,
        recommended_tests=normalize_recommended_tests(_pick(raw, "recommendedTests"), transcript),
        patient_summary=summary,
        suggested_icd10=_codes(_pick(raw, "suggestedIcd10")),
        suggested_cpt=_codes(_pick(raw, "suggestedCpt")),
        medications=_medications(_pick(raw, "medications")),
        allergies=_allergies(_pick(raw, "allergies")),
        follow_up_tasks=tasks,
        custom_sections=custom_sections,
        provider=provider,
    )
