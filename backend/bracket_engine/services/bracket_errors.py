"""
Bracket engine error taxonomy.

Validation errors (InsufficientParticipants, InvalidFormatParameters,
UnsupportedFormat, DuplicateGenerationInProgress) are raised before any write.
Resolution errors (SlotAlreadyResolved, InconsistentBracketState) abort the
triggering transaction; callers retry from the last persisted state.
"""
from typing import Any, Dict, Optional


class BracketEngineError(Exception):
    code = "BRACKET_ENGINE_ERROR"
    http_status = 400

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": self.context}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InsufficientParticipants(BracketEngineError):
    code = "INSUFFICIENT_PARTICIPANTS"
    http_status = 422


class InvalidFormatParameters(BracketEngineError):
    code = "INVALID_FORMAT_PARAMETERS"
    http_status = 422


class UnsupportedFormat(BracketEngineError):
    code = "UNSUPPORTED_FORMAT"
    http_status = 422


class DuplicateGenerationInProgress(BracketEngineError):
    code = "DUPLICATE_GENERATION_IN_PROGRESS"
    http_status = 409


class SlotNotResolved(BracketEngineError):
    code = "SLOT_NOT_RESOLVED"
    http_status = 409


class SlotAlreadyResolved(BracketEngineError):
    code = "SLOT_ALREADY_RESOLVED"
    http_status = 409


class MatchNotFound(BracketEngineError):
    code = "MATCH_NOT_FOUND"
    http_status = 404


class BracketNotFound(BracketEngineError):
    code = "BRACKET_NOT_FOUND"
    http_status = 404


class InvalidMatchResult(BracketEngineError):
    code = "INVALID_MATCH_RESULT"
    http_status = 422


class BracketBusy(BracketEngineError):
    code = "BRACKET_BUSY"
    http_status = 409


class InconsistentBracketState(BracketEngineError):
    """Design-invariant violation. Always fatal; never patched around."""

    code = "INCONSISTENT_BRACKET_STATE"
    http_status = 500
