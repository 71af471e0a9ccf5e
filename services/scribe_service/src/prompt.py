import json
import re
from typing import Dict, List, Optional

from .roles import SpeakerStatements
from .schemas import NoteTemplateConfig, PatientContext, SOAP_SECTIONS

system_prompt = (
    "You are an expert dermatology medical scribe. Generate accurate, detailed clinical notes "
    "in JSON format. Identifiers in the transcript have been replaced with placeholders such as "
    "[PATIENT] or ***-**-****; never try to reconstruct them."
)

note_prompt = """You are an expert dermatology medical scribe. Generate a comprehensive SOAP clinical note from the following patient-provider conversation transcript.

CONVERSATION TRANSCRIPT:
{transcript}

PATIENT STATEMENTS:
{patient_statements}

PROVIDER STATEMENTS:
{doctor_statements}

Please generate a structured clinical note in the following JSON format:

{{
  "chiefComplaint": "Brief chief complaint statement",
  "hpi": "Detailed History of Present Illness using OLDCARTS format (Onset, Location, Duration, Character, Aggravating/Relieving factors, Timing, Severity)",
  "ros": "Complete Review of Systems",
  "physicalExam": "Detailed dermatologic examination findings with morphology, distribution, and clinical observations",
  "assessment": "Clinical assessment with differential diagnosis",
  "plan": "Detailed treatment plan including medications, patient education, follow-up",
  "suggestedIcd10": [{{"code": "X00.0", "description": "Diagnosis name", "confidence": 0.95}}],
  "suggestedCpt": [{{"code": "99213", "description": "E/M code", "confidence": 0.90}}],
  "medications": [{{"name": "Drug name", "dosage": "Strength/form", "frequency": "Schedule", "confidence": 0.92}}],
  "allergies": [{{"allergen": "Substance", "reaction": "Reaction type", "confidence": 0.98}}],
  "followUpTasks": [{{"task": "Task description", "priority": "high/medium/low", "dueDate": "YYYY-MM-DD", "confidence": 0.90}}],
  "sectionConfidence": {{
    "chiefComplaint": 0.95,
    "hpi": 0.90,
    "ros": 0.85,
    "physicalExam": 0.92,
    "assessment": 0.88,
    "plan": 0.90
  }},
  "differentialDiagnoses": [
    {{
      "condition": "Name of condition",
      "confidence": 0.0-1.0,
      "reasoning": "Brief clinical reasoning for this diagnosis",
      "icd10Code": "Suggested ICD-10 code"
    }}
  ],
  "recommendedTests": [
    {{
      "testName": "Name of test/procedure",
      "rationale": "Why recommended based on conversation",
      "urgency": "routine" | "soon" | "urgent",
      "cptCode": "Suggested CPT code if applicable"
    }}
  ],
  "patientSummary": {{
    "whatWeDiscussed": "Simple description of what was discussed during the visit",
    "yourConcerns": ["List of symptoms/concerns the patient mentioned"],
    "diagnosis": "Patient-friendly explanation of the diagnosis (if diagnosis made)",
    "treatmentPlan": "What to do next in simple, patient-friendly terms",
    "followUp": "When to return for follow-up"
  }}
}}

REQUIREMENTS:
- Use proper medical terminology for dermatology
- Include specific dermatologic descriptors (e.g., erythematous, macular, papular, etc.)
- Extract all mentioned medications with dosing
- Identify all allergies mentioned
- Suggest appropriate ICD-10 and CPT codes
- Create follow-up tasks based on provider instructions
- Provide confidence scores for each section
- Be thorough but concise

DIFFERENTIAL_DIAGNOSES (array of 2-5 possible conditions):
- Rank by confidence level based on clinical presentation
- Provide clear clinical reasoning for each differential
- Include appropriate ICD-10 codes for billing consideration
- Consider common dermatologic conditions and mimickers

RECOMMENDED_TESTS (array of relevant tests):
- Base recommendations on clinical findings and differentials
- Specify urgency level appropriate to presentation
- Include CPT codes where applicable for billing
- Consider cost-effectiveness and clinical necessity

PATIENT_SUMMARY (patient-friendly language):
- Use simple, non-technical terms a patient can understand
- Clearly list what the patient told you about their symptoms
- Explain the diagnosis in plain language if one was made
- Provide actionable treatment steps in everyday language
- Clearly state when they need to come back

Return ONLY the JSON object, no additional text."""

template_body = """Generate a clinical note ({{sections}}) for {{patientName}}, age {{patientAge}}.

CHIEF COMPLAINT: {{chiefComplaint}}
RELEVANT HISTORY: {{relevantHistory}}

CONVERSATION TRANSCRIPT:
{{transcript}}"""

_VARIABLE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(template: str, variables: Dict[str, str]) -> str:
    """Substitute {{name}} placeholders; unknown names are left as written."""
    return _VARIABLE.sub(lambda m: variables.get(m.group(1), m.group(0)), template)


def build_note_prompt(transcript: str, statements: SpeakerStatements) -> str:
    return note_prompt.format(
        transcript=transcript,
        patient_statements=" ".join(statements.patient),
        doctor_statements=" ".join(statements.doctor),
    )


def _output_schema(sections: List[str]) -> Dict[str, object]:
    schema: Dict[str, object] = {section: f"Content for {section}" for section in sections}
    schema.update({
        "sectionConfidence": {section: 0.90 for section in sections},
        "suggestedIcd10": [{"code": "X00.0", "description": "Diagnosis", "confidence": 0.90}],
        "suggestedCpt": [{"code": "99213", "description": "E/M code", "confidence": 0.90}],
        "medications": [{"name": "Medication", "dosage": "Dosage", "frequency": "Frequency", "confidence": 0.90}],
        "allergies": [{"allergen": "Allergen", "reaction": "Reaction", "confidence": 0.90}],
        "followUpTasks": [{"task": "Task", "priority": "medium", "dueDate": "2024-01-01", "confidence": 0.90}],
        "differentialDiagnoses": [{"condition": "Condition", "confidence": 0.90, "reasoning": "Reasoning", "icd10Code": "X00.0"}],
        "recommendedTests": [{"testName": "Test", "rationale": "Rationale", "urgency": "routine", "cptCode": "00000"}],
        "patientSummary": {
            "whatWeDiscussed": "Discussion summary",
            "yourConcerns": ["Concern 1"],
            "diagnosis": "Diagnosis explanation",
            "treatmentPlan": "Treatment plan",
            "followUp": "Follow-up timing",
        },
    })
    return schema


def build_template_prompt(
    transcript: str,
    statements: SpeakerStatements,
    template: NoteTemplateConfig,
    patient_context: Optional[PatientContext] = None,
) -> str:
    """Prompt for a practice-configured note: sections, terminology, focus areas and codes."""
    ctx = patient_context or PatientContext()
    sections = template.note_sections or list(SOAP_SECTIONS)

    prompt = render_template(template.prompt_template or template_body, {
        "transcript": transcript,
        "patientName": ctx.patient_name or "Patient",
        "patientAge": str(ctx.patient_age) if ctx.patient_age is not None else "Unknown",
        "chiefComplaint": ctx.chief_complaint or "See transcript",
        "relevantHistory": ctx.relevant_history or "See transcript",
        "sections": ", ".join(sections),
        "doctorStatements": " ".join(statements.doctor),
        "patientStatements": " ".join(statements.patient),
    })

    lines: List[str] = [prompt, ""]
    if template.terminology_set:
        lines.append("USE THESE TERMINOLOGY SETS:")
        lines.extend(f"- {category}: {', '.join(terms)}" for category, terms in template.terminology_set.items())
        lines.append("")
    if template.focus_areas:
        lines.append("FOCUS AREAS FOR THIS VISIT TYPE:")
        lines.append(", ".join(template.focus_areas))
        lines.append("")
    if template.default_cpt_codes:
        lines.append("COMMON CPT CODES FOR THIS VISIT TYPE:")
        lines.extend(f"- {c.code}: {c.description}" for c in template.default_cpt_codes)
        lines.append("")
    if template.default_icd10_codes:
        lines.append("COMMON ICD-10 CODES FOR THIS VISIT TYPE:")
        lines.extend(f"- {c.code}: {c.description}" for c in template.default_icd10_codes)
        lines.append("")

    lines.append("SECTION REQUIREMENTS:")
    lines.extend(
        f"- {section}: {template.section_prompts.get(section) or f'Generate appropriate content for {section}'}"
        for section in sections
    )
    lines += [
        "",
        f"OUTPUT FORMAT: {template.output_format or 'soap'}",
        f"VERBOSITY LEVEL: {template.verbosity_level or 'standard'}",
        f"INCLUDE BILLING CODES: {'Yes' if template.include_codes else 'No'}",
        "",
        "Please return a JSON object with this structure:",
        json.dumps(_output_schema(sections), indent=2),
        "",
        "IMPORTANT: Return ONLY valid JSON, no additional text or markdown formatting.",
    ]
    return "\n".join(lines)
