"""Exception hierarchy for pre-stream turn failures.

Each error carries the HTTP status the server returns when it is raised
before the event stream opens.
"""


class ChatRelayError(Exception):
    """Base exception for request-level failures."""

    status: int = 500

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status

    def to_dict(self) -> dict[str, object]:
        return {"success": False, "message": self.message}


class ValidationError(ChatRelayError):
    """Bad or missing fields, unsupported model."""

    status = 400


class AuthenticationError(ChatRelayError):
    """No trusted user identity on the request."""

    status = 401


class BillingError(ChatRelayError):
    """The user has no metered credits left."""

    status = 402


class AuthorizationError(ChatRelayError):
    """Conversation or profile not owned by the caller."""

    status = 403


class NotFoundError(ChatRelayError):
    status = 404


class UpstreamError(ChatRelayError):
    """The completion provider failed."""

    status = 502


class PersistenceError(ChatRelayError):
    status = 500
