"""Error taxonomy for e-invoice QR parsing.

Callers should branch on `ParseError.kind`, never on the message text.
"""

from __future__ import annotations

from enum import Enum


class ParseErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    INVALID_FORMAT = "InvalidFormat"
    INCOMPLETE_HEADER = "IncompleteHeader"
    AMBIGUOUS_BOTH_HEADER = "AmbiguousBothHeader"
    AMBIGUOUS_BOTH_DETAIL = "AmbiguousBothDetail"


class ParseError(ValueError):
    def __init__(self, kind: ParseErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class SubmissionError(RuntimeError):
    """Raised when a parsed record is not fit to be sent to the backend."""
