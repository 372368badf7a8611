class BeeperError(Exception):
    """Base class for errors raised by the reminder core."""


class ValidationError(BeeperError):
    """Submission rejected: bad recipient, missing time or duplicate id."""

    def __init__(self, message: str, status: str = "invalid"):
        super().__init__(message)
        self.status = status


class ExpiredError(BeeperError):
    """Submission target time is not in the future."""


class ParseError(BeeperError):
    """A timestamp could not be parsed."""


class DeliveryFailure(BeeperError):
    """The notifier could not deliver a message."""


class PersistenceFailure(BeeperError):
    """The pending file could not be written."""
