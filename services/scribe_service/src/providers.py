import json
import random
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Protocol, Sequence

import anyio
import httpx
from openai import AsyncOpenAI

from .config import Settings
from .exceptions import NoteParseError, ProviderError, RetryableError
from .mock_note import generate_mock_note
from .roles import SpeakerStatements
from .schemas import TranscriptionSegment


@dataclass
class NoteRequest:
    prompt: str
    system_prompt: str
    temperature: float
    max_tokens: int
    transcript: str
    segments: Sequence[TranscriptionSegment]
    statements: SpeakerStatements
    model: Optional[str] = None
    today: Optional[date] = None


def is_claude_model(model: Optional[str]) -> bool:
    return bool(model) and model.lower().startswith("claude")


class NoteProvider(Protocol):
    name: str
    # External providers only ever see sanitized text
    external: bool

    def is_configured(self) -> bool: ...

    async def complete(self, request: NoteRequest) -> str: ...


class AnthropicNoteProvider:
    name = "anthropic"
    external = True

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self._settings.anthropic_api_key)

    async def complete(self, request: NoteRequest) -> str:
        body: Dict[str, object] = {
            "model": request.model if is_claude_model(request.model) else self._settings.anthropic_note_model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            body["system"] = request.system_prompt
        headers = {
            "x-api-key": self._settings.anthropic_api_key or "",
            "anthropic-version": self._settings.anthropic_version,
            "content-type": "application/json",
        }

        async with httpx.AsyncClient(
            base_url=self._settings.anthropic_base_url,
            timeout=self._settings.provider_timeout_s,
            transport=self._transport,
        ) as client:
            resp = await client.post("/v1/messages", json=body, headers=headers)

        if resp.status_code >= 400:
            raise ProviderError(self.name, resp.status_code, resp.text[:300])

        try:
            data = resp.json()
        except ValueError as e:
            # Body cut off mid-stream
            raise RetryableError(f"Anthropic returned an unreadable body ({len(resp.content)} bytes)") from e
        text = "".join(
            block.get("text", "") for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type", "text") == "text"
        ).strip()
        if not text:
            raise NoteParseError("Anthropic response has no text content")
        return text


class OpenAINoteProvider:
    name = "openai"
    external = True

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self._settings.openai_api_key)

    async def complete(self, request: NoteRequest) -> str:
        timeout = self._settings.provider_timeout_s
        # Claude model names only apply to the Anthropic provider
        model = request.model if request.model and not is_claude_model(request.model) else self._settings.openai_note_model
        async with AsyncOpenAI(
            api_key=self._settings.openai_api_key,
            base_url=self._settings.openai_base_url,
            max_retries=0,
            timeout=timeout,
            http_client=httpx.AsyncClient(transport=self._transport, timeout=timeout),
        ) as client:
            completion = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": request.system_prompt},
                    {"role": "user", "content": request.prompt},
                ],
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )

        content = completion.choices[0].message.content if completion.choices else None
        if not content or not content.strip():
            raise NoteParseError("OpenAI response has no message content")
        return content.strip()


class MockNoteProvider:
    """Rule-based note from transcript keywords. Local only, never fails."""
    name = "mock"
    external = False

    def __init__(self, settings: Settings, rng: Optional[random.Random] = None):
        self._settings = settings
        self._rng = rng or random.Random()

    def is_configured(self) -> bool:
        return True

    async def complete(self, request: NoteRequest) -> str:
        delay = self._settings.mock_delay_s(self._rng, 3000, 5000)
        if delay > 0:
            await anyio.sleep(delay)
        note = generate_mock_note(request.transcript, request.statements, today=request.today)
        return json.dumps(note)


EXTERNAL_PROVIDERS = {
    "anthropic": AnthropicNoteProvider,
    "openai": OpenAINoteProvider,
}


def select_note_providers(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    rng: Optional[random.Random] = None,
) -> List[NoteProvider]:
    """Configured providers in preference order, with the mock always last."""
    chain: List[NoteProvider] = []
    for name in settings.note_provider_order:
        factory = EXTERNAL_PROVIDERS.get(name.strip().lower())
        if factory is None:
            continue
        provider = factory(settings, transport)
        if provider.is_configured() and all(p.name != provider.name for p in chain):
            chain.append(provider)
    chain.append(MockNoteProvider(settings, rng))
    return chain
