"""
Domain exceptions shared by the billing reconciler and the AI metering gate.
"""


class FlowBoardError(Exception):
    """Base exception for domain errors."""

    pass


class AuthenticationError(FlowBoardError):
    """Raised when a webhook signature or caller identity cannot be verified."""

    pass


class NotFoundError(FlowBoardError):
    """Raised when no account row exists for the given identifier."""

    pass


class QuotaExceededError(FlowBoardError):
    """Raised when the monthly AI request quota is used up."""

    def __init__(self, limit: int, current: int):
        self.limit = limit
        self.current = current
        super().__init__(f"AI request limit reached ({current}/{limit})")


class InfrastructureError(FlowBoardError):
    """Raised when the store or an external provider call fails."""

    pass


class UnrecognizedEventError(FlowBoardError):
    """Raised when a billing event type has no handler."""

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unrecognized billing event type: {event_type}")
