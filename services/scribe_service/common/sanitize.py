# common/sanitize.py
import hashlib
from typing import Any

from ..src.phi import redact_for_log

SAFE_KEYS = {
    "duration_seconds", "live", "provider", "model_name", "language", "url", "method",
}
SENSITIVE_KEYS = {
    "authorization", "api_key", "token", "headers",
    "transcript", "transcript_text", "text", "body", "prompt", "audio_path",
}

def hash_preview(s: str, n: int = 12) -> str:
    if not isinstance(s, str):
        s = str(s)
    return f"sha256={hashlib.sha256(s.encode('utf-8')).hexdigest()[:n]},len={len(s)}"

def safe_error_message(error: BaseException, limit: int = 500) -> str:
    """Error text with PHI replaced by type labels, e.g. '[SSN-REDACTED]'."""
    message = str(error) or type(error).__name__
    return redact_for_log(message)[:limit]

def sanitize_value(key: str, value: Any) -> Any:
    k = (key or "").lower()
    if k in SAFE_KEYS:
        return value
    if k in SENSITIVE_KEYS:
        # Never log raw; return only hash/length
        return hash_preview(str(value))
    if isinstance(value, (bytes, bytearray)):
        return f"bytes:{len(value)}"
    if isinstance(value, str):
        return redact_for_log(value) if len(value) <= 120 else hash_preview(value)
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {k: sanitize_value(k, v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return f"{type(value).__name__}:{len(value)}"
    # Models carry transcript text; log only what they are
    return f"<{type(value).__name__}>"
