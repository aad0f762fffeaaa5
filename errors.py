"""Error taxonomy shared by the server and the client."""


class ValidationError(ValueError):
    """Raised when an expense payload is malformed. Never retried."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(reason)
        self.field = field
        self.reason = reason


class InvalidAmount(ValidationError):
    def __init__(self, reason: str = "Invalid amount") -> None:
        super().__init__("amount", reason)


class NotFound(LookupError):
    """Raised when an expense id does not match a stored record."""


class InternalError(RuntimeError):
    """Raised for unexpected storage or server failures."""


class TransientNetworkFailure(ConnectionError):
    """Raised by the client when the server could not be reached."""
