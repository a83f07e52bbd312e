class UserError(Exception):
    """Base class for failures that are safe to show to the requesting user."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class Unauthenticated(UserError):
    """Raised when no user is signed in."""
    status_code = 401

class NotFound(UserError):
    """Raised when the message or thread does not exist."""
    status_code = 404

class Forbidden(UserError):
    """Raised when the user lacks the role needed for the action."""
    status_code = 403

class UnknownMessageType(UserError):
    """Raised when a message type has no handler."""
    status_code = 400

class InvalidMessageContent(UserError):
    """Raised when the content does not match the declared message type."""
    status_code = 400

class UpstreamFailure(UserError):
    """Wraps a store, upload or permission-service error; carries its message."""
    status_code = 502
