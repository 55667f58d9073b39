"""Exceptions raised by the subscription loop and the delivery dispatcher."""

from typing import Optional


class RelayError(Exception):
    """Base class for relay failures."""


class ConfigurationError(RelayError):
    """A required setting is missing or unusable."""


class StreamConnectionError(RelayError):
    """The ntfy stream could not be opened."""


class UnexpectedStatusError(RelayError):
    """The ntfy server answered the subscription with something other than 200."""

    def __init__(self, status: int, domain: str = ""):
        self.status = status
        self.domain = domain
        super().__init__(f"invalid response code from ntfy: {status}")


class StreamInterruptedError(RelayError):
    """The ntfy stream failed while lines were being read."""


class DecodeError(RelayError):
    """A single stream line could not be decoded into an event."""

    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"cannot decode ntfy line: {reason}")


class DeliveryConnectionError(RelayError):
    """The Slack webhook could not be reached."""


class DeliveryRejectedError(RelayError):
    """The Slack webhook answered with an error status."""

    def __init__(self, status: int, body: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(f"error status code {status}")


class RetriesExhaustedError(RelayError):
    """The configured retry cap was reached without a successful session."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"gave up after {attempts} failed connection attempts")
