"""
Notification poller for the SQS event queue.

Receives a batch of messages, decodes each body as an S3 event notification
and emits one Notification per well-formed single-event message.
"""

import logging
from typing import List, Optional

from pydantic import ValidationError

from conduit.clients.interfaces import QueueClient
from conduit.core.errors import QueueReceiveError, SchemaError
from conduit.core.models.notification import Notification, NotificationEnvelope
from conduit.core.models.pipeline_config import PipelineConfig
from conduit.observability.logger import get_logger
from conduit.observability.metrics import MetricsCollector
from conduit.streaming.sinks.quarantine_sink import QuarantineSink

logger = get_logger(__name__)


def decode_message(
    body: str | bytes,
    receipt_handle: str = "",
    message_id: Optional[str] = None,
) -> Optional[Notification]:
    """
    Decode a message body into a Notification.

    Args:
        body: Raw JSON message body
        receipt_handle: Delivery handle of the message instance
        message_id: Queue message identifier

    Returns:
        The notification, or None if the body holds no records

    Raises:
        SchemaError: If the body is not valid JSON, holds more than one
            record, or its record is not a valid S3 event
    """
    try:
        envelope = NotificationEnvelope.model_validate_json(body)
    except ValidationError as e:
        raise SchemaError(
            f"Malformed message body: {e.error_count()} validation error(s)",
            body=body,
            message_id=message_id,
            reason="malformed",
        ) from e

    record_count = len(envelope.records)
    if record_count == 0:
        return None

    # There should only ever be a single record per message
    if record_count > 1:
        raise SchemaError(
            f"Message holds {record_count} records, expected exactly one",
            body=body,
            message_id=message_id,
            reason="multiple_records",
        )

    try:
        notification = Notification.model_validate(envelope.records[0])
    except ValidationError as e:
        raise SchemaError(
            f"Invalid event record: {e.error_count()} validation error(s)",
            body=body,
            message_id=message_id,
            reason="invalid_record",
        ) from e

    return notification.with_delivery(receipt_handle, message_id)


class NotificationPoller:
    """
    Polls the queue for S3 event notifications.

    Schema violations are contained to their message: they are logged,
    counted and handed to the quarantine sink, and the message is left
    unacknowledged so the queue redelivers it (or dead-letters it).
    """

    def __init__(
        self,
        queue: QueueClient,
        config: PipelineConfig,
        metrics: Optional[MetricsCollector] = None,
        quarantine: Optional[QuarantineSink] = None,
    ):
        """
        Initialize the poller.

        Args:
            queue: Queue collaborator
            config: Resolved pipeline configuration (batch size, visibility timeout)
            metrics: Metrics collector
            quarantine: Optional sink for schema-violating message bodies
        """
        self.queue = queue
        self.config = config
        self.metrics = metrics or MetricsCollector()
        self.quarantine = quarantine

    def poll(self) -> List[Notification]:
        """
        Receive one batch and decode it.

        Returns:
            Notifications for every well-formed single-event message (may be empty)

        Raises:
            QueueReceiveError: If the receive call fails
        """
        logger.debug("Polling for messages...")
        try:
            with self.metrics.time_stage("poll"):
                messages = self.queue.receive(self.config.batch_size, self.config.visibility_timeout)
        except Exception as e:
            self.metrics.record_poll(0, success=False)
            raise QueueReceiveError(f"Failed to receive messages from {self.config.queue_url}: {e}") from e

        self.metrics.record_poll(len(messages))

        if not messages:
            logger.debug("No messages received")
            return []

        notifications = []
        for message in messages:
            try:
                notification = decode_message(message.body, message.receipt_handle, message.message_id)
            except SchemaError as e:
                self._reject(e)
                continue

            if notification is None:
                logger.info("Message holds no records, ignoring", extra={"message_id": message.message_id})
                continue

            self.metrics.record_notification()
            notifications.append(notification)

        logger.info(
            f"Received {len(messages)} message(s), emitted {len(notifications)} notification(s)"
        )
        return notifications

    def _reject(self, error: SchemaError) -> None:
        logger.error(
            f"Rejected message: {error}",
            extra={"message_id": error.message_id, "reason": error.reason},
        )
        self.metrics.record_schema_violation(error.reason)
        self.metrics.record_error(error, error.component)
        if self.quarantine is not None:
            self.quarantine.write(error)
