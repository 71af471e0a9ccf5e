import argparse
import json
import os
import uuid
from typing import Any, Dict, Optional

import anyio

from .common.context import set_context
from .otel import init_tracing
from .src.config import settings
from .src.schemas import NoteTemplateConfig, PatientContext
from .src.service import build_pipeline

os.environ.setdefault("SERVICE_NAME", settings.service_name)
tracer = init_tracing(service_name=settings.service_name, service_version="v1") if settings.tracing_enabled else None

pipeline = build_pipeline(settings)


async def process_recording(
    audio_path: str,
    duration_seconds: float,
    template: Optional[NoteTemplateConfig] = None,
    patient_context: Optional[PatientContext] = None,
    encounter_id: Optional[str] = None,
    live: bool = False,
) -> Dict[str, Any]:
    """One encounter recording -> camelCase JSON payload with transcript, masked transcript and note."""
    set_context(str(uuid.uuid4()), encounter_id)
    result = await pipeline.run(
        audio_path,
        duration_seconds,
        template=template,
        patient_context=patient_context,
        live=live,
    )
    return result.model_dump(mode="json", by_alias=True)


def _load_json(path: Optional[str]) -> Optional[Dict[str, Any]]:
    if not path:
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def cli(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Transcribe an encounter recording and draft a clinical note.")
    parser.add_argument("audio_path")
    parser.add_argument("--duration", type=float, default=0.0, help="recording length in seconds")
    parser.add_argument("--template", help="path to a note template JSON file")
    parser.add_argument("--patient", help="path to a patient context JSON file")
    parser.add_argument("--encounter-id")
    parser.add_argument("--live", action="store_true", help="use the short live-transcription retry profile")
    args = parser.parse_args(argv)

    template = _load_json(args.template)
    patient = _load_json(args.patient)
    payload = anyio.run(
        lambda: process_recording(
            args.audio_path,
            args.duration,
            template=NoteTemplateConfig.model_validate(template) if template else None,
            patient_context=PatientContext.model_validate(patient) if patient else None,
            encounter_id=args.encounter_id,
            live=args.live,
        )
    )
    print(json.dumps(payload, indent=2))


if __name__ == "__main__":
    cli()
