from __future__ import annotations


class HelpBoardError(Exception):
    """Base class for errors surfaced to a specific caller."""

    code = "error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(HelpBoardError):
    code = "authentication_error"
    status_code = 401


class PermissionDeniedError(HelpBoardError):
    code = "permission_denied"
    status_code = 403


class ValidationError(HelpBoardError):
    code = "validation_error"
    status_code = 400


class NotFoundError(HelpBoardError):
    code = "not_found"
    status_code = 404


class InvalidTransitionError(HelpBoardError):
    code = "invalid_transition"
    status_code = 409


class GenerationFailure(Exception):
    """Raised by the LLM runtime. Never leaves the response engine."""
