import random
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

from .schemas import RetryConfig

class Settings(BaseSettings):

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    service_name: str = "scribe-service"
    tracing_enabled: bool = False

    # Providers
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    provider_timeout_s: float = 120.0

    # Models
    openai_transcribe_model: str = "whisper-1"
    openai_note_model: str = "gpt-4o"
    anthropic_note_model: str = "claude-3-5-sonnet-20241022"
    transcribe_language: str = "en"
    note_provider_order: List[str] = ["anthropic", "openai"]
    note_temperature: float = 0.3
    note_max_tokens: int = 4000

    # Mock mode: None keeps the realistic random delay, 0 disables it
    ambient_ai_mock_delay_ms: Optional[int] = None

    # Retry profiles
    transcription_retry: RetryConfig = RetryConfig(max_retries=3, initial_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2)
    live_transcription_retry: RetryConfig = RetryConfig(max_retries=1, initial_delay_ms=250, max_delay_ms=1000, backoff_multiplier=2)
    note_retry: RetryConfig = RetryConfig(max_retries=2, initial_delay_ms=1000, max_delay_ms=8000, backoff_multiplier=2)

    def mock_delay_s(self, rng: random.Random, low_ms: int, high_ms: int) -> float:
        """Simulated processing time for mock mode; the override wins when set."""
        if self.ambient_ai_mock_delay_ms is not None:
            return max(self.ambient_ai_mock_delay_ms, 0) / 1000.0
        return rng.uniform(low_ms, high_ms) / 1000.0

settings = Settings() # type: ignore
