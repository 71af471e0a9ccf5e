import random
import time
from datetime import date
from typing import Callable, Optional, Sequence

import httpx
from opentelemetry import trace

from ..common.log_calls import log_calls
from ..common.sanitize import safe_error_message
from .config import Settings, settings as default_settings
from .exceptions import NoteParseError
from .logging import jlog
from .normalize import normalize_note, parse_note_json
from .outbound import OutboundSanitizer
from .phi import PHIDetector, get_detector, mask_phi
from .prompt import build_note_prompt, build_template_prompt, system_prompt
from .providers import NoteProvider, NoteRequest, select_note_providers
from .retry import RetryExecutor
from .roles import classify_segments
from .schemas import (
    ClinicalNote,
    NoteTemplateConfig,
    PatientContext,
    PipelineResult,
    SOAP_SECTIONS,
    SpeakerInfo,
    TranscriptionSegment,
)
from .transcription import TranscriptionAdapter

tracer = trace.get_tracer("scribe.pipeline")


class ClinicalNoteGenerator:
    """Transcript + segments -> ClinicalNote, trying each configured provider before the mock."""

    def __init__(
        self,
        settings: Settings,
        providers: Optional[Sequence[NoteProvider]] = None,
        executor: Optional[RetryExecutor] = None,
        sanitizer: Optional[OutboundSanitizer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._settings = settings
        self._providers = list(providers) if providers is not None else select_note_providers(settings, transport, rng)
        self._executor = executor or RetryExecutor()
        self._sanitizer = sanitizer or OutboundSanitizer()
        self._today = today or date.today

    def _request(
        self,
        provider: NoteProvider,
        transcript_text: str,
        segments: Sequence[TranscriptionSegment],
        speakers: Optional[SpeakerInfo],
        template: Optional[NoteTemplateConfig],
        patient_context: Optional[PatientContext],
    ) -> NoteRequest:
        if provider.external:
            clean = self._sanitizer.sanitize(transcript_text, segments, patient_context)
            transcript_text, segments, patient_context = clean.transcript, clean.segments, clean.patient_context
            jlog(event="outbound_sanitized", provider=provider.name, redacted_fields=clean.redacted_fields)

        statements = classify_segments(segments, speakers)
        if template is not None:
            prompt = build_template_prompt(transcript_text, statements, template, patient_context)
        else:
            prompt = build_note_prompt(transcript_text, statements)

        return NoteRequest(
            prompt=prompt,
            system_prompt=(template.system_prompt if template and template.system_prompt else system_prompt),
            temperature=(
                template.temperature if template and template.temperature is not None
                else self._settings.note_temperature
            ),
            max_tokens=(template.max_tokens if template and template.max_tokens else self._settings.note_max_tokens),
            model=template.ai_model if template else None,
            transcript=transcript_text,
            segments=segments,
            statements=statements,
            today=self._today(),
        )

    @log_calls("generate_note")
    async def generate(
        self,
        transcript_text: str,
        segments: Sequence[TranscriptionSegment],
        template: Optional[NoteTemplateConfig] = None,
        patient_context: Optional[PatientContext] = None,
        speakers: Optional[SpeakerInfo] = None,
    ) -> ClinicalNote:
        sections = template.note_sections if template else SOAP_SECTIONS
        external = [p for p in self._providers if p.external]
        fallback = [p for p in self._providers if not p.external]
        if not external:
            jlog(event="note_mock", reason="no_api_key")

        chain = list(external)
        while chain or fallback:
            provider = chain.pop(0) if chain else fallback.pop(0)
            request = self._request(provider, transcript_text, segments, speakers, template, patient_context)

            start = time.time()
            try:
                if provider.external:
                    jlog(event="note_provider_start", provider=provider.name, model_name=request.model)
                    text = await self._executor.run(
                        lambda: provider.complete(request), f"{provider.name}_note", self._settings.note_retry
                    )
                else:
                    text = await provider.complete(request)
                raw = parse_note_json(text, sections)
            except NoteParseError as e:
                jlog(event="note_parse_failed", severity="WARNING", provider=provider.name, error=safe_error_message(e))
                # Unusable output goes straight to the local fallback
                chain = []
                continue
            except Exception as e:
                if not provider.external:
                    raise
                jlog(
                    event="note_provider_failed",
                    severity="WARNING",
                    provider=provider.name,
                    error_type=type(e).__name__,
                    error=safe_error_message(e),
                )
                continue

            note = normalize_note(
                raw,
                transcript=transcript_text,
                template=template,
                today=request.today,
                provider=provider.name,
            )
            jlog(
                event="note_ok",
                provider=provider.name,
                latency_ms=int((time.time() - start) * 1000),
                overall_confidence=round(note.overall_confidence, 3),
                differentials=len(note.differential_diagnoses),
            )
            return note

        raise RuntimeError("No note provider available")


class AmbientScribePipeline:
    """Recording -> TranscriptionResult -> ClinicalNote, with the transcript masked for storage."""

    def __init__(
        self,
        transcriber: TranscriptionAdapter,
        note_generator: ClinicalNoteGenerator,
        detector: Optional[PHIDetector] = None,
    ):
        self.transcriber = transcriber
        self.note_generator = note_generator
        self._detector = detector or get_detector()

    async def transcribe(self, audio_path: str, duration_seconds: float, live: bool = False):
        with tracer.start_as_current_span("scribe.transcribe"):
            return await self.transcriber.transcribe(audio_path, duration_seconds, live=live)

    async def generate_note(
        self,
        transcript_text: str,
        segments: Sequence[TranscriptionSegment],
        template: Optional[NoteTemplateConfig] = None,
        patient_context: Optional[PatientContext] = None,
        speakers: Optional[SpeakerInfo] = None,
    ) -> ClinicalNote:
        with tracer.start_as_current_span("scribe.generate_note"):
            return await self.note_generator.generate(
                transcript_text, segments, template=template, patient_context=patient_context, speakers=speakers,
            )

    async def run(
        self,
        audio_path: str,
        duration_seconds: float,
        template: Optional[NoteTemplateConfig] = None,
        patient_context: Optional[PatientContext] = None,
        live: bool = False,
    ) -> PipelineResult:
        with tracer.start_as_current_span("scribe.pipeline"):
            transcription = await self.transcribe(audio_path, duration_seconds, live=live)
            masked = mask_phi(transcription.text, transcription.phi_entities)
            note = await self.generate_note(
                transcription.text,
                transcription.segments,
                template=template,
                patient_context=patient_context,
                speakers=transcription.speakers,
            )
            jlog(
                event="pipeline_ok",
                transcription_provider=transcription.provider,
                note_provider=note.provider,
                phi_entities=len(transcription.phi_entities),
            )
            return PipelineResult(transcription=transcription, masked_transcript=masked, note=note)


def build_pipeline(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    executor: Optional[RetryExecutor] = None,
    rng: Optional[random.Random] = None,
) -> AmbientScribePipeline:
    settings = settings or default_settings
    executor = executor or RetryExecutor(rng=rng)
    detector = get_detector()
    return AmbientScribePipeline(
        transcriber=TranscriptionAdapter(settings, executor=executor, detector=detector, transport=transport, rng=rng),
        note_generator=ClinicalNoteGenerator(
            settings,
            executor=executor,
            sanitizer=OutboundSanitizer(detector),
            transport=transport,
            rng=rng,
        ),
        detector=detector,
    )
