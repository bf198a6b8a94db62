# errors.py

from typing import Any, Dict, Optional

from pydantic import BaseModel


class AnalystError(Exception):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "", details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or message


class MalformedRequestError(AnalystError):
    kind = "malformed_request"
    status_code = 400


class LLMAuthenticationError(AnalystError):
    """Provider rejected our credentials. Never retried."""
    kind = "authentication"
    status_code = 401


class TransientLLMError(AnalystError):
    """Retryable provider failure (timeout, 429, 5xx, garbled body)."""
    kind = "llm_unavailable"
    status_code = 502


class AnalysisTimeoutError(AnalystError):
    kind = "timeout"
    status_code = 408

    def __init__(self, timeout_ms: int):
        super().__init__("Analysis timeout - task took longer than expected", f"No result within {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class InternalAnalysisError(AnalystError):
    kind = "internal"
    status_code = 500


# =========================
# Typed failure payload
# =========================

class Failure(BaseModel):
    kind: str
    error: str
    details: str
    timeout_ms: Optional[int] = None

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND.get(self.kind, 500)

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.error, "details": self.details}
        if self.timeout_ms is not None:
            out["processingTime"] = f"{self.timeout_ms}ms"
        return out

    @classmethod
    def from_error(cls, err: AnalystError) -> "Failure":
        return cls(
            kind=err.kind,
            error=err.message or type(err).__name__,
            details=err.details,
            timeout_ms=getattr(err, "timeout_ms", None),
        )


_STATUS_BY_KIND = {
    cls.kind: cls.status_code
    for cls in (MalformedRequestError, LLMAuthenticationError, TransientLLMError, AnalysisTimeoutError, InternalAnalysisError)
}


def classify(exc: BaseException) -> Failure:
    """Map any exception escaping the pipeline to a Failure; internals stay short."""
    if isinstance(exc, AnalystError):
        return Failure.from_error(exc)
    return Failure(kind="internal", error="Analysis failed", details=f"{type(exc).__name__}: {str(exc)[:200]}")
