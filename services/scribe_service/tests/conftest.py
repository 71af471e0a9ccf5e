import json
import logging

import pytest

from services.scribe_service.src.config import Settings
from services.scribe_service.src.logging import SERVICE_NAME


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in Settings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_settings():
    def factory(**overrides):
        values = dict(
            openai_api_key=None,
            anthropic_api_key=None,
            openai_base_url="https://api.openai.com/v1",
            anthropic_base_url="https://api.anthropic.com",
            ambient_ai_mock_delay_ms=0,
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return factory


@pytest.fixture
def settings(make_settings):
    return make_settings()


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def log_events(caplog):
    caplog.set_level(logging.INFO, logger=SERVICE_NAME)

    def events(name=None):
        found = [json.loads(r.getMessage()) for r in caplog.records if r.name == SERVICE_NAME]
        return [e for e in found if name is None or e.get("event") == name]
    return events
