import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

from presidio_analyzer import Pattern, PatternRecognizer, RecognizerResult
from presidio_anonymizer import AnonymizerEngine
from presidio_anonymizer.entities import OperatorConfig
from presidio_anonymizer.entities import RecognizerResult as AnonymizerResult

from .schemas import PHIEntity

CASE_INSENSITIVE = re.DOTALL | re.MULTILINE | re.IGNORECASE
CASE_SENSITIVE = re.DOTALL | re.MULTILINE
PATTERN_SCORE = 0.85

_MONTH = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|Aug(?:ust)?"
    r"|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)
_NUMERIC_DATE = r"\d{1,2}[/-]\d{1,2}[/-]\d{2,4}"
_WORD_DATE = _MONTH + r"\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}"
_STREET_SUFFIX = (
    r"(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Court|Ct|Way|Place|Pl"
    r"|Terrace|Ter|Circle|Cir|Parkway|Pkwy|Highway|Hwy|Trail|Trl)"
)
_US_STATES = (
    r"(?:AL|AK|AZ|AR|CA|CO|CT|DE|DC|FL|GA|HI|ID|IL|IN|IA|KS|KY|LA|ME|MD|MA|MI|MN|MS|MO|MT|NE|NV"
    r"|NH|NJ|NM|NY|NC|ND|OH|OK|OR|PA|RI|SC|SD|TN|TX|UT|VT|VA|WA|WV|WI|WY)"
)

Mask = Union[str, Callable[[str], str]]


def _mask_digits(span: str) -> str:
    return re.sub(r"\d", "*", span)


@dataclass(frozen=True)
class PHICategory:
    type: str
    regex: str
    mask: Mask
    flags: int = CASE_INSENSITIVE

    @property
    def entity(self) -> str:
        return self.type.upper()

    def mask_for(self, span: str) -> str:
        return self.mask(span) if callable(self.mask) else self.mask


# Order matters: a match that overlaps a range claimed by an earlier category is dropped.
PHI_CATEGORIES: Tuple[PHICategory, ...] = (
    PHICategory("ssn", r"\b\d{3}[- ]\d{2}[- ]\d{4}\b", "***-**-****"),
    PHICategory("phone", r"(?:\+?1[-.\s]?)?(?:\(\d{3}\)\s?|\b\d{3}[-.\s])\d{3}[-.\s]\d{4}\b", "***-***-****"),
    PHICategory(
        "dob",
        r"\b(?:DOB|D\.O\.B\.?|date\s+of\s+birth|birth\s*date|born\s+on)\s*[:#-]?\s*"
        r"(?:" + _NUMERIC_DATE + "|" + _WORD_DATE + r")\b",
        "[DOB REDACTED]",
    ),
    PHICategory(
        "dob",
        r"\b(?:0?[1-9]|1[0-2])/(?:0?[1-9]|[12]\d|3[01])/(?:\d{4}|\d{2})\b",
        "**/**/****",
    ),
    PHICategory(
        "mrn",
        r"\b(?:MRN|medical\s+record\s+(?:number|no\.?|#))\s*[:#]?\s*(?:[A-Z]{1,3}-?)?\d{5,12}\b",
        "[MRN REDACTED]",
    ),
    PHICategory("mrn", r"\bMR-?\d{6,10}\b", "[MRN REDACTED]"),
    PHICategory("email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "[EMAIL REDACTED]"),
    PHICategory(
        "address",
        r"\b\d{1,6}\s+(?:[A-Z][a-zA-Z]*\.?\s+){1,4}" + _STREET_SUFFIX + r"\b\.?"
        r"(?:,?\s+(?:Apt|Apartment|Suite|Ste|Unit)\.?\s*#?\s*[A-Za-z0-9-]+)?"
        r"(?:,\s*[A-Z][a-zA-Z]*(?:\s+[A-Z][a-zA-Z]*)*,?\s+" + _US_STATES + r"(?:\s+\d{5}(?:-\d{4})?)?)?",
        "[ADDRESS REDACTED]",
        CASE_SENSITIVE,
    ),
    PHICategory("po_box", r"\bP\.?\s?O\.?\s*Box\s+\d{1,6}\b", "[PO BOX REDACTED]"),
    PHICategory(
        "zip",
        r"\b(?:" + _US_STATES + r"|(?i:zip(?:\s*code)?\s*[:#]?))\s+\d{5}(?:-\d{4})?\b",
        _mask_digits,
        CASE_SENSITIVE,
    ),
    PHICategory(
        "insurance_id",
        r"\b(?:insurance|policy|member|subscriber|group|plan)\s*(?:id|number|no\.?|#)?\s*[:#]?\s*"
        r"(?=[A-Z0-9-]*\d)[A-Z0-9][A-Z0-9-]{4,19}\b",
        "[INSURANCE ID REDACTED]",
    ),
    PHICategory("credit_card", r"\b(?:\d{4}[-\s]?){3}\d{4}\b", "****-****-****-****"),
    PHICategory(
        "ip_address",
        r"\b(?:(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\.){3}(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\b",
        "***.***.***.***",
    ),
    PHICategory(
        "drivers_license",
        r"\b(?:driver['’]?s?\s+licen[sc]e|DL)\s*(?:number|no\.?|#)?\s*[:#]?\s*"
        r"(?=[A-Z0-9-]*\d)[A-Z0-9][A-Z0-9-]{4,14}\b",
        "[LICENSE REDACTED]",
    ),
    PHICategory(
        "account_number",
        r"\b(?:account|acct)\.?\s*(?:number|no\.?|#)?\s*[:#]?\s*\d{6,17}\b",
        "[ACCOUNT REDACTED]",
    ),
)


class PHIDetector:
    """Pattern-based PHI detection with first-category-wins overlap resolution.

    Each category is a presidio PatternRecognizer; no NLP engine is loaded.
    A candidate rejected for overlapping an earlier claim is rescanned from
    one character past its start.
    """

    def __init__(self, categories: Sequence[PHICategory] = PHI_CATEGORIES):
        self._recognizers: List[Tuple[PHICategory, PatternRecognizer, re.Pattern]] = [
            (
                category,
                PatternRecognizer(
                    supported_entity=category.entity,
                    name=f"{category.type}_recognizer_{i}",
                    patterns=[Pattern(name=f"{category.type}_{i}", regex=category.regex, score=PATTERN_SCORE)],
                    global_regex_flags=category.flags,
                ),
                re.compile(category.regex, category.flags),
            )
            for i, category in enumerate(categories)
        ]

    def analyze(self, text: str) -> List[Tuple[PHICategory, RecognizerResult]]:
        if not text:
            return []

        claimed: List[Tuple[int, int]] = []
        accepted: List[Tuple[PHICategory, RecognizerResult]] = []
        for category, recognizer, pattern in self._recognizers:
            results = sorted(recognizer.analyze(text=text, entities=[category.entity]), key=lambda r: (r.start, r.end))
            i = 0
            while i < len(results):
                result = results[i]
                if any(result.start < end and start < result.end for start, end in claimed):
                    results[i:] = [
                        RecognizerResult(category.entity, m.start(), m.end(), PATTERN_SCORE)
                        for m in pattern.finditer(text, result.start + 1)
                    ]
                    continue
                claimed.append((result.start, result.end))
                accepted.append((category, result))
                i += 1
        accepted.sort(key=lambda pair: pair[1].start)
        return accepted

    def detect(self, text: str) -> List[PHIEntity]:
        return [
            PHIEntity(
                type=category.type,
                text=text[r.start:r.end],
                start=r.start,
                end=r.end,
                masked_value=category.mask_for(text[r.start:r.end]),
            )
            for category, r in self.analyze(text)
        ]


def mask_phi(text: str, entities: Sequence[PHIEntity]) -> str:
    """Replace each entity span with its mask, splicing from the end so offsets stay valid."""
    masked = text
    for entity in sorted(entities, key=lambda e: e.start, reverse=True):
        masked = masked[:entity.start] + entity.masked_value + masked[entity.end:]
    return masked


# Global engines (load once per process)
_DETECTOR: Optional[PHIDetector] = None
_ANONYMIZER: Optional[AnonymizerEngine] = None

def get_detector() -> PHIDetector:
    global _DETECTOR
    if _DETECTOR is None:
        _DETECTOR = PHIDetector()
    return _DETECTOR

def detect_phi(text: str) -> List[PHIEntity]:
    return get_detector().detect(text)

def redact_for_log(text: str) -> str:
    """Replace detected PHI with type labels like [SSN-REDACTED] for log lines."""
    global _ANONYMIZER
    if not text:
        return text
    findings = get_detector().analyze(text)
    if not findings:
        return text
    if _ANONYMIZER is None:
        _ANONYMIZER = AnonymizerEngine()

    results = [AnonymizerResult(entity_type=c.entity, start=r.start, end=r.end, score=r.score) for c, r in findings]
    operators = {
        c.entity: OperatorConfig("replace", {"new_value": f"[{c.entity}-REDACTED]"})
        for c, _ in findings
    }
    return _ANONYMIZER.anonymize(text=text, analyzer_results=results, operators=operators).text
