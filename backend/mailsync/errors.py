"""Error taxonomy for the bank email sync workflow.

Propagation policy:
- Per-message errors (GatewayError on fetch, ParseError) are recorded on the
  candidate email and the run continues.
- Per-connection errors (CredentialError, GatewayError on search, StoreError)
  abort only that connection's run and are recorded on the connection.
- The scheduler never raises; it aggregates and logs.

Usage:
    from mailsync.errors import ParseError, ParseErrorKind

    raise ParseError(ParseErrorKind.INVALID_AMOUNT, "Could not extract valid amount")
"""

from enum import Enum


class EmailSyncError(Exception):
    """Base class for every error raised by the sync core."""


class ConnectionNotFoundError(EmailSyncError):
    """The mailbox connection does not exist."""


class ConnectionInactiveError(EmailSyncError):
    """The mailbox connection has been disabled (revoked or disconnected)."""


class CredentialError(EmailSyncError):
    """Access token could not be obtained or refreshed."""


class GatewayError(EmailSyncError):
    """Transient mailbox API failure (network, rate limit, 5xx)."""


class StoreError(EmailSyncError):
    """A database read or write failed."""


class InvalidTransitionError(EmailSyncError):
    """A candidate email status change that the state machine forbids."""


class CompletionError(EmailSyncError):
    """The completion service failed.

    Attributes:
        kind: "transient" (timeout, network, rate limit, empty reply) or
            "malformed" (reply that cannot be used)
    """

    TRANSIENT = "transient"
    MALFORMED = "malformed"

    def __init__(self, message: str, kind: str = TRANSIENT):
        super().__init__(message)
        self.kind = kind


class ParseErrorKind(Enum):
    """Why an email could not be turned into a transaction."""

    TRANSIENT = "transient"  # Completion service empty/unreachable/timed out
    MALFORMED = "malformed"  # Reply was not the JSON shape we asked for
    SKIPPED_PAYMENT = "skipped_payment"  # Card payment confirmation, not a purchase
    INVALID_AMOUNT = "invalid_amount"  # No positive amount in the reply


class ParseError(EmailSyncError):
    """Parser failure, carried inside ParseResult rather than raised."""

    def __init__(
        self, kind: ParseErrorKind, message: str, raw_response: str | None = None
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.raw_response = raw_response

    @property
    def is_failure(self) -> bool:
        """Payment confirmations are deliberate exclusions, everything else failed."""
        return self.kind is not ParseErrorKind.SKIPPED_PAYMENT

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"
