"""Error taxonomy shared by the services and the streaming handlers.

Learn: Every error carries a stable, client-facing ``message``. The
WebSocket dispatch boundary sends it verbatim as ``{"error": message}``;
REST routes map each class to an HTTP status.

- AuthorizationError: identity missing, or not a participant of the chat
- ValidationError: malformed frame/request, chat or user id mismatch
- NotFoundError: chat, message or notification does not exist
- TransportError: the connection itself failed (fatal for the session)
- DependencyError: Postgres or Redis unavailable
"""


class HeartlineError(Exception):
    """Base class. ``message`` is safe to show to the client."""

    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthorizationError(HeartlineError):
    default_message = "You don't have access"


class ValidationError(HeartlineError):
    default_message = "Invalid request"


class NotFoundError(HeartlineError):
    default_message = "Not found"


class TransportError(HeartlineError):
    default_message = "Connection error"


class DependencyError(HeartlineError):
    default_message = "Service temporarily unavailable"
