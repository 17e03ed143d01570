"""Error taxonomy for session operations.

Every error carries a machine-readable ``code`` that decides how callers
handle it, a human-readable ``message`` for display, and the HTTP status
the API layer answers with.
"""


class SessionError(Exception):
    """Base class for failures surfaced by the session engine."""
    code = "error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(SessionError):
    """Session, round, or player entry does not exist."""
    code = "not_found"
    status_code = 404


class ForbiddenError(SessionError):
    """Host secret or player id did not match."""
    code = "forbidden"
    status_code = 403


class InvalidStateError(SessionError):
    """Operation not permitted in the current phase."""
    code = "invalid_state"


class CapacityExceededError(SessionError):
    """Session already has the maximum number of players."""
    code = "capacity_exceeded"


class LogicError(SessionError):
    """Internal bookkeeping is inconsistent, e.g. a prompt cursor past the last role."""
    code = "logic_error"


class GenerationError(SessionError):
    """The image-generation provider failed after all retries."""
    code = "generation_failed"
    status_code = 502
