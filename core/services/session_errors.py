"""Error taxonomy for live gym sessions.

Every error carries a stable ``code`` (surfaced to API clients) and an
``http_status`` hint used by the route layer. Raising any of these leaves the
stored session untouched.
"""

from __future__ import annotations


class SessionError(Exception):
    code = "SESSION_ERROR"
    http_status = 409

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)


# -- Validation: rejected before a session exists --


class InvalidTemplate(SessionError):
    """Template is malformed or has no blocks."""

    code = "INVALID_TEMPLATE"
    http_status = 422


class EmptyFirstBlock(SessionError):
    """First block must have at least one step in follow_steps mode."""

    code = "EMPTY_FIRST_BLOCK"
    http_status = 422


# -- State preconditions --


class NotRunning(SessionError):
    """Session must be running."""

    code = "NOT_RUNNING"


class NotPaused(SessionError):
    """Session must be paused."""

    code = "NOT_PAUSED"


class MissingRemaining(SessionError):
    """Paused session has no remaining_ms to resume from."""

    code = "MISSING_REMAINING"


class SessionNotActive(SessionError):
    """Session is stopped or ended."""

    code = "SESSION_NOT_ACTIVE"


class NotApplicable(SessionError):
    """Step navigation only works in follow_steps mode."""

    code = "NOT_APPLICABLE"


class BeforeFirstStep(SessionError):
    """Cannot go before the first step."""

    code = "BEFORE_FIRST_STEP"


class BeyondFirstBlock(SessionError):
    """Cannot go before the first block."""

    code = "BEYOND_FIRST_BLOCK"


class BeyondLastBlock(SessionError):
    """Cannot go beyond the last block."""

    code = "BEYOND_LAST_BLOCK"


class EmptyBlock(SessionError):
    """Target block has no steps in follow_steps mode."""

    code = "EMPTY_BLOCK"


# -- Lookup / staleness --


class SessionNotFound(SessionError):
    """Session not found."""

    code = "SESSION_NOT_FOUND"
    http_status = 404


class TemplateNotFound(SessionError):
    """Template not found."""

    code = "TEMPLATE_NOT_FOUND"
    http_status = 404


class SessionConflict(SessionError):
    """Session was modified by another actor; refresh and retry."""

    code = "SESSION_CONFLICT"

    def __init__(self, session_id: str, expected_version: int, actual_version: int | None = None) -> None:
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Session {session_id} changed since version {expected_version}"
            + (f" (now {actual_version})" if actual_version is not None else "")
        )
