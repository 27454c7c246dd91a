"""Error taxonomy shared by all components.

Every operation fails independently by raising one of these; the API layer
maps them to responses. None of them is fatal to the process.
"""


class MessengerError(Exception):
    """Base class for domain errors."""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MessengerError):
    """Malformed payload for the declared message type or bad arguments."""

    code = "validation_error"


class NotAuthorized(MessengerError):
    """Blocked relationship between sender and receiver."""

    code = "not_authorized"


class Forbidden(MessengerError):
    """Caller lacks the right to perform the operation."""

    code = "forbidden"


class NotMember(Forbidden):
    """Caller is not a member of the group."""

    code = "not_member"


class Expired(Forbidden):
    """The time window for the operation has passed."""

    code = "expired"


class NotFound(MessengerError):
    """Unknown message, group or user id."""

    code = "not_found"


class TransportFailure(MessengerError):
    """A best-effort push to a live session failed."""

    code = "transport_failure"
