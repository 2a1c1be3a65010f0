"""
Acknowledger: deletes fully processed notifications from the queue.
"""

from typing import Optional

from conduit.clients.interfaces import QueueClient
from conduit.core.errors import AckError
from conduit.core.models import Notification
from conduit.observability.logger import get_logger, log_operation
from conduit.observability.metrics import MetricsCollector

logger = get_logger(__name__)


class Acknowledger:
    """
    Deletes a notification using its delivery handle.

    This is the single point at which a record counts as processed. A failed
    delete means the message will be redelivered and reprocessed, so writes
    must be idempotent (deterministic destination keys).
    """

    def __init__(self, queue: QueueClient, metrics: Optional[MetricsCollector] = None):
        self.queue = queue
        self.metrics = metrics or MetricsCollector()

    def ack(self, notification: Notification, outcome: str = "loaded") -> None:
        """
        Delete ``notification`` from the queue.

        Args:
            notification: Notification carrying the receipt handle
            outcome: "loaded" after a successful write, "empty" when the
                transform produced nothing and the policy acknowledges anyway

        Raises:
            AckError: If the delete fails
        """
        if not notification.receipt_handle:
            raise AckError("Notification has no receipt handle", notification)

        try:
            with log_operation("Deleting message", logger, **notification.log_fields()):
                with self.metrics.time_stage("ack"):
                    self.queue.delete(notification.receipt_handle)
        except Exception as e:
            raise AckError(f"Failed to delete message {notification.message_id}: {e}", notification) from e

        self.metrics.record_ack(outcome)
