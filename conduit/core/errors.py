"""
Error taxonomy for the conduit pipeline.

ConfigError is fatal at startup. Every other error is contained to the
record that raised it: the record is left unacknowledged and the queue's
redelivery retries it later.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from conduit.core.models.notification import Notification


class ConduitError(Exception):
    """Base class for all pipeline errors."""
    pass


class ConfigError(ConduitError):
    """Raised when a required option is unresolved or an option is invalid."""
    pass


class RecordError(ConduitError):
    """
    Base class for per-record failures.

    Carries the notification being processed when one exists so handlers
    can log the message id and object locator.
    """

    component = "pipeline"

    def __init__(self, message: str, notification: Optional["Notification"] = None):
        super().__init__(message)
        self.notification = notification


class SchemaError(RecordError):
    """Raised when a message body is malformed or holds more than one event."""

    component = "poller"

    def __init__(
        self,
        message: str,
        body: str | bytes | None = None,
        message_id: str | None = None,
        reason: str = "malformed",
    ):
        super().__init__(message)
        self.body = body
        self.message_id = message_id
        self.reason = reason


class QueueReceiveError(RecordError):
    """Raised when the receive call against the queue fails."""

    component = "poller"


class ObjectFetchError(RecordError):
    """Raised when the source object cannot be retrieved."""

    component = "fetcher"


class TransformError(RecordError):
    """Raised when the caller-supplied transform fails."""

    component = "transformer"


class WriteError(RecordError):
    """Raised when an artifact cannot be written to the destination store."""

    component = "loader"


class AckError(RecordError):
    """Raised when a notification cannot be deleted from the queue."""

    component = "acknowledger"
