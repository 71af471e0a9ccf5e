import math
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import anyio
import httpx
from openai import AsyncOpenAI

from ..common.log_calls import log_calls
from ..common.sanitize import safe_error_message
from .config import Settings
from .logging import jlog
from .mock_data import DERM_TERMS, MOCK_CONVERSATION
from .phi import PHIDetector, get_detector
from .retry import RetryExecutor
from .schemas import SpeakerInfo, SpeakerProfile, TranscriptionResult, TranscriptionSegment

SPEAKER_CHANGE_PAUSE_S = 2.0
DEFAULT_SEGMENT_CONFIDENCE = 0.85
MOCK_DEFAULT_DURATION_S = 60.0
MOCK_DURATION_JITTER = 0.2

AUDIO_CONTENT_TYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
}
DEFAULT_AUDIO_CONTENT_TYPE = "audio/webm"


def audio_content_type(audio_path: str) -> str:
    return AUDIO_CONTENT_TYPES.get(Path(audio_path).suffix.lower().lstrip("."), DEFAULT_AUDIO_CONTENT_TYPE)


def default_speakers() -> SpeakerInfo:
    return {
        "speaker_0": SpeakerProfile(role="doctor", display_name="Provider"),
        "speaker_1": SpeakerProfile(role="patient", display_name="Patient"),
    }


def _segment_confidence(raw: Dict[str, Any]) -> float:
    confidence = raw.get("confidence")
    if isinstance(confidence, (int, float)):
        return float(confidence)
    logprob = raw.get("avg_logprob")
    if isinstance(logprob, (int, float)):
        return round(min(max(math.exp(logprob), 0.0), 1.0), 4)
    return DEFAULT_SEGMENT_CONFIDENCE


def _flip(speaker: str) -> str:
    return "speaker_1" if speaker == "speaker_0" else "speaker_0"


def assign_speakers_by_heuristic(raw_segments: List[Dict[str, Any]]) -> List[TranscriptionSegment]:
    """Guess turns for undiarized segments.

    A pause longer than SPEAKER_CHANGE_PAUSE_S or a preceding question flips the
    speaker. Clinical vocabulary in the first third of the recording pins the
    provider.
    """
    segments: List[TranscriptionSegment] = []
    current = "speaker_0"
    early_cutoff = len(raw_segments) / 3

    for i, raw in enumerate(raw_segments):
        text = (raw.get("text") or "").strip()
        if not text:
            continue
        start = float(raw.get("start") or 0.0)
        end = float(raw.get("end") or start)

        if segments:
            previous = segments[-1]
            if start - previous.end > SPEAKER_CHANGE_PAUSE_S or previous.text.endswith("?"):
                current = _flip(current)

        lowered = text.lower()
        if i < early_cutoff and any(term in lowered for term in DERM_TERMS):
            current = "speaker_0"

        segments.append(TranscriptionSegment(
            speaker=current, text=text, start=start, end=end, confidence=_segment_confidence(raw),
        ))
    return segments


def assign_speakers_from_diarization(raw_segments: List[Dict[str, Any]]) -> List[TranscriptionSegment]:
    """Map provider speaker labels to speaker_N in order of first appearance."""
    labels: Dict[str, str] = {}
    segments: List[TranscriptionSegment] = []
    for raw in raw_segments:
        text = (raw.get("text") or "").strip()
        if not text:
            continue
        label = str(raw.get("speaker") if raw.get("speaker") is not None else "unknown")
        if label not in labels:
            labels[label] = f"speaker_{len(labels)}"
        start = float(raw.get("start") or 0.0)
        segments.append(TranscriptionSegment(
            speaker=labels[label],
            text=text,
            start=start,
            end=float(raw.get("end") or start),
            confidence=_segment_confidence(raw),
        ))
    return segments


def speakers_for(segments: List[TranscriptionSegment]) -> SpeakerInfo:
    speakers: SpeakerInfo = {}
    for seg in segments:
        if seg.speaker not in speakers:
            first = not speakers
            speakers[seg.speaker] = SpeakerProfile(
                role="doctor" if first else "patient",
                display_name="Provider" if first else None,
            )
    return speakers


@dataclass
class ParsedTranscript:
    text: str
    segments: List[TranscriptionSegment] = field(default_factory=list)
    speakers: SpeakerInfo = field(default_factory=dict)
    language: Optional[str] = None
    duration: Optional[float] = None


def parse_transcription_payload(payload: Any) -> ParsedTranscript:
    """Normalize the three provider shapes: text only, timestamped segments, diarized segments."""
    if isinstance(payload, str):
        return ParsedTranscript(text=payload.strip())

    text = (payload.get("text") or "").strip()
    language = payload.get("language")
    duration = payload.get("duration")
    raw_segments = [s for s in (payload.get("segments") or []) if isinstance(s, dict)]

    if any("speaker" in s for s in raw_segments):
        segments = assign_speakers_from_diarization(raw_segments)
        speakers = speakers_for(segments)
    elif raw_segments:
        segments = assign_speakers_by_heuristic(raw_segments)
        speakers = default_speakers()
    else:
        segments, speakers = [], {}

    if not text:
        text = " ".join(s.text for s in segments)
    return ParsedTranscript(
        text=text,
        segments=segments,
        speakers=speakers,
        language=language,
        duration=float(duration) if isinstance(duration, (int, float)) else None,
    )


def generate_mock_conversation(duration_seconds: float, rng: random.Random) -> List[TranscriptionSegment]:
    """Canned visit whose turn lengths jitter around an even split and sum to the requested duration."""
    total = duration_seconds if duration_seconds and duration_seconds > 0 else MOCK_DEFAULT_DURATION_S
    weights = [1.0 + rng.uniform(-MOCK_DURATION_JITTER, MOCK_DURATION_JITTER) for _ in MOCK_CONVERSATION]
    scale = total / sum(weights)

    segments: List[TranscriptionSegment] = []
    cursor = 0.0
    last = len(MOCK_CONVERSATION) - 1
    for i, ((speaker, text), weight) in enumerate(zip(MOCK_CONVERSATION, weights)):
        end = total if i == last else cursor + weight * scale
        segments.append(TranscriptionSegment(
            speaker=speaker,
            text=text,
            start=cursor,
            end=end,
            confidence=round(rng.uniform(0.85, 0.95), 2),
        ))
        cursor = end
    return segments


class TranscriptionAdapter:
    """Audio file -> TranscriptionResult, via OpenAI when configured, otherwise the canned visit."""

    def __init__(
        self,
        settings: Settings,
        executor: Optional[RetryExecutor] = None,
        detector: Optional[PHIDetector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ):
        self._settings = settings
        self._executor = executor or RetryExecutor()
        self._detector = detector or get_detector()
        self._transport = transport
        self._rng = rng or random.Random()

    @log_calls("transcribe_audio")
    async def transcribe(self, audio_path: str, duration_seconds: float, live: bool = False) -> TranscriptionResult:
        if not self._settings.openai_api_key:
            jlog(event="transcribe_mock", reason="no_api_key")
            return await self._mock_transcribe(duration_seconds)

        try:
            return await self._transcribe_with_openai(audio_path, duration_seconds, live)
        except Exception as e:
            jlog(
                event="transcribe_fallback",
                severity="WARNING",
                provider="openai",
                model_name=self._settings.openai_transcribe_model,
                error_type=type(e).__name__,
                error=safe_error_message(e),
            )
            return await self._mock_transcribe(duration_seconds)

    def _openai_client(self) -> AsyncOpenAI:
        timeout = self._settings.provider_timeout_s
        return AsyncOpenAI(
            api_key=self._settings.openai_api_key,
            base_url=self._settings.openai_base_url,
            max_retries=0,
            timeout=timeout,
            http_client=httpx.AsyncClient(transport=self._transport, timeout=timeout),
        )

    async def _transcribe_with_openai(self, audio_path: str, duration_seconds: float, live: bool) -> TranscriptionResult:
        model = self._settings.openai_transcribe_model
        audio = await anyio.Path(audio_path).read_bytes()

        kwargs: Dict[str, Any] = dict(
            file=(Path(audio_path).name, audio, audio_content_type(audio_path)),
            model=model,
            language=self._settings.transcribe_language,
        )
        if "diarize" in model:
            kwargs["response_format"] = "diarized_json"
            kwargs["extra_body"] = {"chunking_strategy": "auto"}
        else:
            kwargs["response_format"] = "verbose_json"
            kwargs["timestamp_granularities"] = ["segment"]

        async def _call() -> Any:
            async with self._openai_client() as client:
                raw = await client.audio.transcriptions.with_raw_response.create(**kwargs)
                response = raw.http_response
                if "json" in response.headers.get("content-type", ""):
                    return response.json()
                return response.text

        jlog(event="transcribe_start", provider="openai", model_name=model, audio_bytes=len(audio), live=live)
        start = time.time()
        profile = self._settings.live_transcription_retry if live else self._settings.transcription_retry
        payload = await self._executor.run(_call, "openai_transcription", profile)
        parsed = parse_transcription_payload(payload)

        result = self._build_result(
            parsed,
            duration=duration_seconds if duration_seconds and duration_seconds > 0 else (parsed.duration or 0.0),
            provider="openai",
        )
        jlog(
            event="transcribe_ok",
            provider="openai",
            model_name=model,
            latency_ms=int((time.time() - start) * 1000),
            segments=len(result.segments),
            phi_entities=len(result.phi_entities),
        )
        return result

    async def _mock_transcribe(self, duration_seconds: float) -> TranscriptionResult:
        delay = self._settings.mock_delay_s(self._rng, 2000, 3000)
        if delay > 0:
            await anyio.sleep(delay)

        segments = generate_mock_conversation(duration_seconds, self._rng)
        parsed = ParsedTranscript(
            text=" ".join(s.text for s in segments),
            segments=segments,
            speakers=default_speakers(),
            language="en",
        )
        return self._build_result(parsed, duration=segments[-1].end, provider="mock")

    def _build_result(self, parsed: ParsedTranscript, duration: float, provider: str) -> TranscriptionResult:
        segments = parsed.segments
        confidence = (
            round(sum(s.confidence for s in segments) / len(segments), 4) if segments else DEFAULT_SEGMENT_CONFIDENCE
        )
        return TranscriptionResult(
            text=parsed.text,
            segments=segments,
            speakers=parsed.speakers,
            speaker_count=len(parsed.speakers),
            confidence=confidence,
            word_count=len(parsed.text.split()),
            phi_entities=self._detector.detect(parsed.text),
            language=parsed.language or self._settings.transcribe_language,
            duration=duration,
            provider=provider,
        )
