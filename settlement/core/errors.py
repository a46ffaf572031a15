"""Exception hierarchy for the settlement engine."""


class SettlementError(Exception):
    """Base class for all settlement engine errors."""


class WorkflowInputError(SettlementError):
    """A job is missing data it needs to advance (wallet, route, external id).

    Raised for configuration and input problems that retrying cannot fix.
    """


class ExternalServiceError(SettlementError):
    """A downstream service call failed after retries were exhausted."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize with a message and the last HTTP status, if any."""
        super().__init__(message)
        self.status_code = status_code


class WebhookVerificationError(SettlementError):
    """A webhook signature could not be verified."""
