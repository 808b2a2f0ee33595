"""Exception taxonomy for the evaluation SDK.

Two families live here:

  - Request-level failures (``ValidationError``, ``SessionNotFoundError``,
    ``SessionExpiredError``, ``DuplicateSessionIdError``) abort the whole
    request and are mapped to HTTP status codes by the server.
  - Per-item failures (``EvaluatorError`` and ``ParseError``) are absorbed
    at the evaluator boundary and converted to conservative results.
"""


class RecordEvalError(Exception):
    """Base class for all SDK errors."""


# ------------------------------------------------------------------
# Input validation
# ------------------------------------------------------------------

class ValidationError(RecordEvalError):
    """Missing, malformed, or oversized input.  Never retried."""


class ComplianceError(ValidationError):
    """The configured evaluator is not allowed for this session class."""


# ------------------------------------------------------------------
# Session lifecycle
# ------------------------------------------------------------------

class SessionNotFoundError(RecordEvalError):
    """No session exists under the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: session_id={session_id}")
        self.session_id = session_id


class SessionExpiredError(RecordEvalError):
    """The session existed but its TTL has elapsed.

    Distinct from ``SessionNotFoundError`` so callers can render
    "expired" rather than "unknown".
    """

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session has expired: session_id={session_id}")
        self.session_id = session_id


class DuplicateSessionIdError(RecordEvalError):
    """A session with the requested id already exists."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session already exists: session_id={session_id}")
        self.session_id = session_id


# ------------------------------------------------------------------
# Evaluator transport
# ------------------------------------------------------------------

class EvaluatorError(RecordEvalError):
    """The external evaluator could not produce a reply."""


class EvaluatorUnavailable(EvaluatorError):
    """Connection refused, non-2xx status, or an empty reply."""


class EvaluatorTimeout(EvaluatorError):
    """The evaluator did not answer within the configured timeout."""


# ------------------------------------------------------------------
# Structured output
# ------------------------------------------------------------------

class ParseError(RecordEvalError):
    """Evaluator output could not be parsed into the expected structure.

    Carries the original text so it can be logged for diagnostics.
    """

    def __init__(self, message: str, raw_text: str) -> None:
        super().__init__(message)
        self.raw_text = raw_text
