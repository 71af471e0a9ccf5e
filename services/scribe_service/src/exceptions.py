from typing import Optional


class ScribeError(Exception):
    retryable: Optional[bool] = None


class RetryableError(ScribeError):
    """Temporary: network timeout, 429/5xx from an AI provider, dropped connection."""
    retryable = True


class PermanentError(ScribeError):
    """Won't improve with retry: bad credentials, rejected request, unusable output."""
    retryable = False


class ProviderError(ScribeError):
    """Non-2xx response from an upstream AI provider. Retryability follows the status."""

    def __init__(self, provider: str, status_code: int, detail: str = ""):
        self.provider = provider
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{provider} returned HTTP {status_code}: {detail}")


class NoteParseError(PermanentError):
    """Provider output could not be turned into a clinical note."""
