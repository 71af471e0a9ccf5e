from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from .mock_data import (
    COMMON_DERM_ICD10,
    CONTACT_DERMATITIS_DIFFERENTIALS,
    OFFICE_VISIT_CPT,
    RASH_DIFFERENTIALS,
)
from .roles import SpeakerStatements

FOLLOW_UP_DAYS = 21


def _contact_dermatitis(text: str) -> bool:
    return "contact dermatitis" in text or "detergent" in text or "new laundry" in text


def _mentions_rash(text: str) -> bool:
    return "rash" in text


def generate_differential_diagnoses(transcript: str) -> List[Dict[str, Any]]:
    text = transcript.lower()
    if _contact_dermatitis(text):
        return [dict(d) for d in CONTACT_DERMATITIS_DIFFERENTIALS]
    if _mentions_rash(text):
        return [dict(d) for d in RASH_DIFFERENTIALS]
    return []


def generate_recommended_tests(transcript: str) -> List[Dict[str, Any]]:
    text = transcript.lower()
    tests: List[Dict[str, Any]] = []

    if "contact dermatitis" in text or _mentions_rash(text):
        if "recurrent" in text or "patch test" in text:
            tests.append({
                "testName": "Patch testing (TRUE Test or expanded panel)",
                "rationale": "Comprehensive allergen identification for recurrent or persistent contact dermatitis.",
                "urgency": "routine",
                "cptCode": "95044",
            })
        if "not better" in text or "worse" in text or "spreading" in text:
            tests.append({
                "testName": "Skin biopsy with histopathology",
                "rationale": "Rule out other inflammatory conditions if the rash does not respond to standard treatment.",
                "urgency": "soon",
                "cptCode": "11100",
            })
            tests.append({
                "testName": "Potassium hydroxide (KOH) preparation",
                "rationale": "Rule out superficial fungal infection if response to corticosteroids is poor.",
                "urgency": "soon",
                "cptCode": "87220",
            })
        tests.append({
            "testName": "Photography for medical record",
            "rationale": "Document baseline appearance for comparison at follow-up to assess treatment response.",
            "urgency": "routine",
            "cptCode": "96904",
        })

    if "infection" in text or "fever" in text:
        tests.append({
            "testName": "Bacterial culture and sensitivity",
            "rationale": "Rule out secondary bacterial infection if signs of impetiginization are present.",
            "urgency": "soon",
            "cptCode": "87070",
        })
    return tests


def _chief_complaint(statements: SpeakerStatements, text: str) -> str:
    patient_text = " ".join(statements.patient).lower() or text
    if not patient_text:
        return "Patient presents for evaluation."
    if _mentions_rash(patient_text):
        if _contact_dermatitis(text):
            return "Pruritic rash on bilateral arms x 2 weeks"
        return "Skin rash requiring dermatologic evaluation"
    return "Skin concern requiring evaluation"


def _hpi(text: str) -> str:
    if _contact_dermatitis(text):
        return """Patient presents with a chief complaint of pruritic rash on bilateral forearms of 2 weeks duration.

ONSET: Rash began approximately 2 weeks ago, shortly after patient switched to a new laundry detergent.

LOCATION: Bilateral forearms, symmetric distribution.

DURATION: Persistent for 2 weeks with progressive worsening.

CHARACTER: Erythematous patches with overlying scale. Patient describes intense pruritus.

AGGRAVATING FACTORS: Symptoms worsen at night and during periods of increased stress.

RELIEVING FACTORS: Minimal relief with over-the-counter hydrocortisone 1% cream and oral diphenhydramine.

TIMING: Continuous, with nocturnal exacerbation of pruritus.

ASSOCIATED SYMPTOMS: Denies fever, chills, joint pain, or rash elsewhere on body."""

    concern = "rash" if _mentions_rash(text) else "skin concern"
    return f"""Patient presents for evaluation of a {concern}.

ONSET: As reported by patient during the visit.

LOCATION: See physical examination.

DURATION: As described in the conversation.

CHARACTER: {"Pruritic" if "itch" in text else "Not further characterized"}.

AGGRAVATING/RELIEVING FACTORS: Not documented.

SEVERITY: Not documented."""


def _ros(text: str) -> str:
    constitutional = (
        "Denies fever, chills, fatigue, or weight changes."
        if "no fever" in text
        else "No constitutional symptoms reported."
    )
    skin = (
        "Positive for rash as described in HPI. Denies other skin lesions."
        if _mentions_rash(text)
        else "Positive for skin concern as described in HPI."
    )
    allergic = (
        "History of penicillin allergy (hives). Denies other known allergies."
        if "penicillin" in text
        else "No known drug allergies reported."
    )
    return f"""CONSTITUTIONAL: {constitutional}
SKIN: {skin}
HEENT: Negative
CARDIOVASCULAR: Negative
RESPIRATORY: Negative
MUSCULOSKELETAL: {"Denies joint pain or swelling." if "joint pain" in text else "Negative"}
NEUROLOGICAL: Negative
ALLERGIC/IMMUNOLOGIC: {allergic}"""


def _physical_exam(text: str) -> str:
    if _contact_dermatitis(text) or _mentions_rash(text):
        return """GENERAL: Patient is alert, oriented, and in no acute distress.

SKIN EXAMINATION:
- UPPER EXTREMITIES: Bilateral erythematous patches on the volar and dorsal forearms
- DISTRIBUTION: Symmetric, well-demarcated
- MORPHOLOGY: Erythematous patches with fine scaling
- SECONDARY CHANGES: Mild excoriation from scratching, no lichenification

REMAINDER OF SKIN: No other lesions, rashes, or concerning findings noted on exposed skin.

LYMPH NODES: No palpable cervical, axillary, or inguinal lymphadenopathy."""
    return """GENERAL: Patient is alert, oriented, and in no acute distress.

SKIN EXAMINATION: Area of concern examined; findings as discussed during the visit.

LYMPH NODES: No palpable lymphadenopathy."""


def _assessment(text: str) -> str:
    if _contact_dermatitis(text):
        lines = [
            "1. Allergic contact dermatitis, bilateral upper extremities (likely secondary to new laundry detergent)",
            "   - ICD-10: L23.9 - Allergic contact dermatitis, unspecified cause",
            "   - Symmetric distribution and temporal relationship to new detergent exposure support diagnosis",
        ]
    elif _mentions_rash(text):
        lines = [
            "1. Dermatitis, unspecified",
            "   - ICD-10: L30.9 - Dermatitis, unspecified",
            "   - Further characterization at follow-up",
        ]
    else:
        lines = ["1. Skin concern requiring further evaluation"]
    if "penicillin" in text:
        lines += ["", "2. Penicillin allergy (documented)",
                  "   - History of hives with penicillin exposure"]
    return "\n".join(lines)


def _medications(doctor_text: str) -> List[Dict[str, Any]]:
    meds = []
    if "triamcinolone" in doctor_text:
        meds.append({"name": "Triamcinolone acetonide", "dosage": "0.1% cream", "frequency": "BID", "confidence": 0.96})
    if "antihistamine" in doctor_text or "cetirizine" in doctor_text:
        meds.append({"name": "Cetirizine", "dosage": "10mg", "frequency": "QHS", "confidence": 0.92})
    return meds


def _plan(text: str, meds: List[Dict[str, Any]], follow_up: bool) -> str:
    sections: List[str] = []
    if meds:
        sections.append("MEDICATIONS:\n" + "\n".join(
            f"   - {m['name']} {m['dosage']}: {m['frequency']}" for m in meds
        ))
    if _contact_dermatitis(text):
        sections.append(
            "ALLERGEN AVOIDANCE:\n"
            "   - Discontinue use of new laundry detergent immediately\n"
            "   - Consider hypoallergenic, fragrance-free detergents for future use"
        )
    sections.append(
        "SKIN CARE:\n"
        "   - Avoid hot showers; use lukewarm water and gentle, fragrance-free soap\n"
        "   - Apply fragrance-free moisturizer BID to affected areas\n"
        "   - Avoid scratching"
    )
    sections.append(
        "FOLLOW-UP:\n"
        + ("   - Return to clinic in 3 weeks for reassessment\n" if follow_up else "")
        + "   - Call office if no improvement in 7 days or if condition worsens"
    )
    return "\n\n".join(f"{i}. {s}" for i, s in enumerate(sections, start=1))


def _icd10(text: str) -> List[Dict[str, Any]]:
    codes = []
    if _contact_dermatitis(text):
        codes.append({"code": "L23.9", "description": "Allergic contact dermatitis, unspecified cause", "confidence": 0.94})
    if "pruritus" in text or "itch" in text:
        codes.append({"code": "L29.9", "description": "Pruritus, unspecified", "confidence": 0.88})
    if not codes:
        codes = [dict(c) for c in COMMON_DERM_ICD10 if c["code"] == "L20.9"]
    return codes


def _allergies(text: str) -> List[Dict[str, Any]]:
    if "penicillin" not in text:
        return []
    return [{"allergen": "Penicillin", "reaction": "Hives" if "hives" in text else "Not specified", "confidence": 0.98}]


def _follow_up_tasks(doctor_text: str, contact: bool, today: date) -> List[Dict[str, Any]]:
    tasks = []
    if "follow up" in doctor_text or "return" in doctor_text:
        tasks.append({
            "task": "Follow-up appointment for reassessment" + (" of contact dermatitis" if contact else ""),
            "priority": "medium",
            "dueDate": (today + timedelta(days=FOLLOW_UP_DAYS)).isoformat(),
            "confidence": 0.95,
        })
    if "call" in doctor_text and "week" in doctor_text:
        tasks.append({
            "task": "Patient to call if no improvement in 7 days",
            "priority": "high",
            "dueDate": None,
            "confidence": 0.88,
        })
    return tasks


def _patient_summary(text: str, meds: List[Dict[str, Any]]) -> Dict[str, Any]:
    if _contact_dermatitis(text):
        return {
            "whatWeDiscussed": "We talked about the rash on your arms that started about 2 weeks ago after "
                               "you began using a new laundry detergent.",
            "diagnosis": "You have allergic contact dermatitis, a skin reaction to something that touched your "
                         "skin. It appears to be caused by the new laundry detergent.",
            "treatmentPlan": "Stop using the new detergent and go back to your old one. "
                             + ("Use the medicines we prescribed as directed. " if meds else "")
                             + "Use gentle soaps, take warm (not hot) showers, and try not to scratch.",
            "followUp": "Come back in 3 weeks so we can check how the rash is healing.",
        }
    return {
        "whatWeDiscussed": "We talked about the skin concern that brought you in today.",
        "diagnosis": None,
        "treatmentPlan": "Follow the skin care steps we discussed and call us if things get worse.",
        "followUp": "",
    }


def generate_mock_note(transcript: str, statements: SpeakerStatements, today: Optional[date] = None) -> Dict[str, Any]:
    """Keyword-driven note in the same JSON shape the AI providers are asked for."""
    today = today or date.today()
    text = transcript.lower()
    doctor_text = " ".join(statements.doctor).lower()
    contact = _contact_dermatitis(text)
    meds = _medications(doctor_text)
    tasks = _follow_up_tasks(doctor_text, contact, today)

    return {
        "chiefComplaint": _chief_complaint(statements, text),
        "hpi": _hpi(text),
        "ros": _ros(text),
        "physicalExam": _physical_exam(text),
        "assessment": _assessment(text),
        "plan": _plan(text, meds, follow_up=bool(tasks)),
        "sectionConfidence": {
            "chiefComplaint": 0.92,
            "hpi": 0.88,
            "ros": 0.82,
            "physicalExam": 0.90,
            "assessment": 0.87,
            "plan": 0.91,
        },
        "differentialDiagnoses": generate_differential_diagnoses(transcript),
        "recommendedTests": generate_recommended_tests(transcript),
        "patientSummary": _patient_summary(text, meds),
        "suggestedIcd10": _icd10(text),
        "suggestedCpt": [dict(OFFICE_VISIT_CPT)],
        "medications": meds,
        "allergies": _allergies(text),
        "followUpTasks": tasks,
    }
