"""
Object sink (loader): writes artifacts to the egress bucket.
"""

from typing import Optional

from conduit.clients.interfaces import ObjectStore
from conduit.core.errors import WriteError
from conduit.core.models import Artifact, Notification
from conduit.observability.logger import get_logger, log_operation
from conduit.observability.metrics import MetricsCollector

logger = get_logger(__name__)


class ObjectSink:
    """
    Writes artifacts under their destination key in the egress bucket.

    Returning the originating notification is the signal that it may be
    acknowledged.
    """

    def __init__(
        self,
        store: ObjectStore,
        bucket: str,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize object sink.

        Args:
            store: Object-store collaborator
            bucket: Egress bucket
            metrics: Metrics collector for tracking writes
        """
        self.store = store
        self.bucket = bucket
        self.metrics = metrics or MetricsCollector()

    def load(self, artifact: Artifact) -> Notification:
        """
        Write one artifact.

        Args:
            artifact: Artifact produced by the transform

        Returns:
            The artifact's originating notification

        Raises:
            WriteError: If the content cannot be encoded or the put fails
        """
        try:
            body = artifact.body()
            with log_operation(
                "Loading artifact",
                logger,
                egress_bucket=self.bucket,
                artifact_key=artifact.key,
                message_id=artifact.notification.message_id,
            ):
                with self.metrics.time_stage("load"):
                    self.store.put(self.bucket, artifact.key, body)
        except Exception as e:
            raise WriteError(
                f"Failed to write s3://{self.bucket}/{artifact.key}: {e}", artifact.notification
            ) from e

        self.metrics.record_write(len(body))
        return artifact.notification
