from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


class QuizAIError(Exception):
    """Base class for every error the intake/generation core raises on purpose."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------
class UnsupportedFileKind(QuizAIError):
    def __init__(self, file_name: str, mime_type: str = "") -> None:
        self.file_name = file_name
        self.mime_type = mime_type
        detail = f" ({mime_type})" if mime_type else ""
        super().__init__(
            f"Unsupported file type for '{file_name}'{detail}. Please upload PDF, DOCX, TXT or an image."
        )


class ExtractionFailure(QuizAIError):
    def __init__(self, file_name: str, reason: str = "") -> None:
        self.file_name = file_name
        self.reason = reason
        msg = f"Could not extract text from '{file_name}'."
        if reason:
            msg += f" {reason}"
        super().__init__(msg)


class EmptyContentError(QuizAIError):
    pass


class StaleSessionError(QuizAIError):
    """Raised at a resumption point when a newer intake replaced this one."""

    def __init__(self, token: int, current: int) -> None:
        self.token = token
        self.current = current
        super().__init__(f"Intake session {token} was superseded by {current}.")


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------
class RateLimited(QuizAIError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"You have reached the limit of {limit} quizzes per 24 hours. Sign in to create more."
        )


class GenerationError(QuizAIError):
    kind: ErrorKind = ErrorKind.FATAL

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransientGenerationFailure(GenerationError):
    kind = ErrorKind.TRANSIENT


class FatalGenerationFailure(GenerationError):
    kind = ErrorKind.FATAL


def error_kind(exc: BaseException) -> ErrorKind:
    """Anything the generation boundary did not classify is fatal."""
    if isinstance(exc, GenerationError):
        return exc.kind
    return ErrorKind.FATAL


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
class LedgerIOFailure(QuizAIError):
    """Only ever carried inside a StoreResult; callers log it and move on."""
