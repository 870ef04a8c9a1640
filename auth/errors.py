"""
auth/errors.py -- Protocol-level rejections raised by auth/session.py.

Each class fixes the HTTP status and the response body the Yggdrasil protocol
prescribes for that rejection. Some rejections carry a structured
{"error", "errorMessage"} body; the rest are empty-bodied status codes, and
clients rely on that difference (an empty 401 from /refresh means "unknown
client token", a structured one means "wrong access token").

api/main.py maps SessionError to a response; nothing else in the codebase
needs to know the status codes.

Store failures and CodecError are NOT SessionErrors: they are not part of the
protocol and surface as opaque 500s.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

FORBIDDEN_OPERATION = "ForbiddenOperationException"
INVALID_CREDENTIALS_MESSAGE = "Invalid credentials. Invalid username or password."
INVALID_TOKEN_MESSAGE = "Invalid token."


class SessionError(Exception):
    """Base class for protocol rejections.

    has_body=False means the response is the bare status code.
    """

    status_code: int = 401
    error: str = FORBIDDEN_OPERATION
    error_message: str = ""
    has_body: bool = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.error_message or type(self).__name__)

    def body(self) -> dict | None:
        """Return the JSON body for this rejection, or None for an empty response."""
        if not self.has_body:
            return None
        return {"error": self.error, "errorMessage": self.error_message}


class CredentialMismatch(SessionError):
    """Unknown username or wrong password (Authenticate, Signout)."""

    status_code = 401
    error_message = INVALID_CREDENTIALS_MESSAGE
    has_body = True


class TokenNotFound(SessionError):
    """No token pair exists for the presented client token (Refresh)."""

    status_code = 401


class TokenMismatch(SessionError):
    """The presented access token is not the pair's current one (Refresh)."""

    status_code = 401
    error_message = INVALID_TOKEN_MESSAGE
    has_body = True


class ValidationFailure(SessionError):
    """The token pair is unknown, revoked, or does not match (Validate)."""

    status_code = 403
