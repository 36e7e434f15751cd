"""Error taxonomy for the messaging core.

Every error carries a machine-readable ``code`` that is sent to the
originating client in ``messageError`` / ``error`` frames and mapped to an
HTTP status by the read-path router. Errors are never broadcast.
"""


class ChatError(Exception):
    """Base class for errors reported back to the originating connection."""

    code = "chat_error"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_payload(self) -> dict:
        return {"error": self.code, "message": self.message}


class AuthError(ChatError):
    """Missing, malformed, badly signed or expired bearer credential."""

    code = "auth_error"
    status_code = 401


class InvalidPairError(ChatError):
    """A room was requested for an identity paired with itself."""

    code = "invalid_pair"
    status_code = 400


class ValidationError(ChatError):
    """Empty or oversized message content, or a malformed event payload."""

    code = "validation_error"
    status_code = 400


class NotAuthorizedError(ChatError):
    """The two identities may not exchange messages."""

    code = "not_authorized"
    status_code = 403


class MessageNotFoundError(ChatError):
    code = "not_found"
    status_code = 404


class PersistenceError(ChatError):
    """The durable store is unavailable or a write failed."""

    code = "persistence_error"
    status_code = 503
