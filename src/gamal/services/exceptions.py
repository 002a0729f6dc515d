"""Custom exceptions for Gamal services."""

from typing import Optional


class GamalError(Exception):
    """Base exception for Gamal errors."""


class RequestTimeoutError(GamalError, TimeoutError):
    """Raised when a remote service does not respond within its deadline.

    Retryable: callers re-issue the identical request with backoff.
    """


class RemoteError(GamalError):
    """Raised when a remote service answers with a non-success status, or
    returns a result set that contains nothing usable.

    Retryable, like RequestTimeoutError.

    Attributes:
        status_code: HTTP status code, or None when the failure is about
            the content of a successful response
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StreamInterruptedError(GamalError):
    """Raised when a streamed answer stops after part of it was forwarded.

    Not retried: a fresh attempt would forward the same text again.
    """


class PipelineError(GamalError):
    """Raised when a pipeline invocation fails for the current turn.

    The underlying error (retry budget exhausted, or a non-retryable
    exception) is chained as ``__cause__``. Nothing is appended to the
    conversation history when this is raised.

    Attributes:
        stage: Name of the stage that failed, if known
    """

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class EvaluationError(GamalError):
    """Raised when a test-spec file cannot be evaluated (unknown role,
    assertion before any answer).

    Attributes:
        line_number: 1-based line in the test-spec file
    """

    def __init__(self, message: str, line_number: Optional[int] = None):
        super().__init__(message)
        self.line_number = line_number
