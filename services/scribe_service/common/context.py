import contextvars
from typing import Optional, Tuple

_correlation_id = contextvars.ContextVar("correlation_id", default=None)
_encounter_id = contextvars.ContextVar("encounter_id", default=None)

def set_context(correlation_id: Optional[str], encounter_id: Optional[str] = None) -> None:
    _correlation_id.set(correlation_id) # type: ignore
    _encounter_id.set(encounter_id) # type: ignore

def get_context() -> Tuple[Optional[str], Optional[str]]:
    return _correlation_id.get(), _encounter_id.get()
