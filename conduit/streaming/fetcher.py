"""
Fetcher: retrieves the object a notification points at.
"""

from typing import Optional

from conduit.clients.interfaces import ObjectStore
from conduit.core.errors import ObjectFetchError
from conduit.core.models import Notification, Payload
from conduit.observability.logger import get_logger, log_operation
from conduit.observability.metrics import MetricsCollector

logger = get_logger(__name__)


class Fetcher:
    """
    Downloads source objects from the ingress store.

    Performs no retries: a failed fetch leaves the notification
    unacknowledged and the queue redelivers it after its visibility timeout.
    """

    def __init__(self, store: ObjectStore, metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.metrics = metrics or MetricsCollector()

    def fetch(self, notification: Notification) -> Payload:
        """
        Fetch the object referenced by ``notification``.

        Raises:
            ObjectFetchError: If the object is missing, the read fails or the
                store returns something other than bytes
        """
        bucket, key = notification.bucket, notification.key
        try:
            with log_operation("Fetching object", logger, **notification.log_fields()):
                with self.metrics.time_stage("fetch"):
                    data = self.store.get(bucket, key)
            return Payload(notification=notification, data=data)
        except Exception as e:
            raise ObjectFetchError(f"Failed to fetch s3://{bucket}/{key}: {e}", notification) from e
