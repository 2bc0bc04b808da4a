"""Error taxonomy shared by the backend, the tutor and the session controller.

Every error carries the HTTP status it maps to so routers can translate
them without a lookup table.
"""
from typing import Optional


class QuickTestError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InputError(QuickTestError):
    """Missing or malformed identifiers; rejected before any remote call."""

    status_code = 400


class NotFoundError(QuickTestError):
    status_code = 404


class UpstreamError(QuickTestError):
    """A collaborator reported an explicit error; its message is kept verbatim."""

    status_code = 502


class UnavailableError(QuickTestError):
    status_code = 503


class TutorUnavailableError(UnavailableError):
    pass


class TransientPersistenceError(QuickTestError):
    """A best-effort write failed. Never unwinds local state."""

    status_code = 503


class SessionStartError(QuickTestError):
    pass


class SessionStateError(QuickTestError):
    status_code = 409


class AttemptClosedError(QuickTestError):
    status_code = 409
