"""
Error handling module for tutor_cli.

Failures fall into four kinds:
- Benign malformation: an unterminated or misspelled marker, shown as text
- Decode failure: an AI entry whose JSON does not parse, shown raw
- Generation failure: an error response embedding a failed_generation
  payload, handled by the recovery path
- Transport failure: anything else the chat endpoints return, passed up to
  the caller

Only transport failures become exceptions. The other three are represented
as degraded output.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .constants import FAILED_GENERATION_MARKER, FAILED_TO_RESPOND_MESSAGE, RECOVERABLE_STATUSES


class ErrorType(Enum):
    """Kinds of failure the conversation pipeline distinguishes.

    BENIGN_MALFORMATION and DECODE_FAILURE never reach the caller as
    exceptions; they label degraded output in the parser and decoder logs.
    """
    BENIGN_MALFORMATION = "benign_malformation"
    DECODE_FAILURE = "decode_failure"
    GENERATION_FAILURE = "generation_failure"
    TRANSPORT_FAILURE = "transport_failure"


@dataclass
class ErrorResult:
    """
    Result of classifying a failure.

    Attributes:
        error_type: The kind of failure detected
        message: Human-readable message for the user
        raw_error: The original error body or message
        recoverable: Whether the pipeline can still produce a message
    """
    error_type: ErrorType
    message: str
    raw_error: str = ""
    recoverable: bool = True


class TutorCliError(Exception):
    """Base exception for tutor_cli."""


class TransportError(TutorCliError):
    """A chat endpoint failed in a way the pipeline cannot recover from."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        preview = body[:200] + ("..." if len(body) > 200 else "")
        super().__init__(f"Chat request failed with status {status_code}: {preview}")


def is_generation_failure(
    status_code: int,
    body: str,
    recoverable_statuses: Iterable[int] = RECOVERABLE_STATUSES,
) -> bool:
    """Whether an error response may carry a recoverable generation."""
    return status_code in tuple(recoverable_statuses) and FAILED_GENERATION_MARKER in (body or "")


def classify_response_failure(
    status_code: int,
    body: str,
    recoverable_statuses: Iterable[int] = RECOVERABLE_STATUSES,
) -> ErrorResult:
    """
    Classify a non-2xx response from the chat-send endpoint.

    Args:
        status_code: HTTP status of the response
        body: Raw response body
        recoverable_statuses: Statuses that may carry a failed generation

    Returns:
        ErrorResult describing the failure
    """
    if is_generation_failure(status_code, body, recoverable_statuses):
        return ErrorResult(
            error_type=ErrorType.GENERATION_FAILURE,
            message=FAILED_TO_RESPOND_MESSAGE,
            raw_error=body,
            recoverable=True,
        )

    return ErrorResult(
        error_type=ErrorType.TRANSPORT_FAILURE,
        message=f"Request failed with status {status_code}",
        raw_error=body or "",
        recoverable=False,
    )


def benign_malformation(detail: str, raw: str = "") -> ErrorResult:
    """Describe a marker problem that was degraded to plain text."""
    return ErrorResult(
        error_type=ErrorType.BENIGN_MALFORMATION,
        message=detail,
        raw_error=raw,
        recoverable=True,
    )


def decode_failure(detail: str, raw: str = "") -> ErrorResult:
    """Describe an AI entry that could not be decoded and is shown raw."""
    return ErrorResult(
        error_type=ErrorType.DECODE_FAILURE,
        message=detail,
        raw_error=raw,
        recoverable=True,
    )
