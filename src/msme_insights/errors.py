from __future__ import annotations

from typing import Literal

ExtractionFailureReason = Literal["llm_unavailable", "malformed_response", "timeout"]


class InsightsError(Exception):
    reason: str = "error"

    def __init__(self, message: str = "", *, reason: str | None = None):
        super().__init__(message or self.reason)
        if reason is not None:
            self.reason = reason

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict[str, str]:
        return {"reason": self.reason, "message": self.message}


class ExtractionError(InsightsError):
    def __init__(self, reason: ExtractionFailureReason, message: str = ""):
        super().__init__(message or reason, reason=reason)


class PersistenceError(InsightsError):
    reason = "persistence_failure"


class JobStateError(InsightsError):
    reason = "invalid_job_state"


class ConversationNotFoundError(InsightsError):
    reason = "conversation_not_found"
