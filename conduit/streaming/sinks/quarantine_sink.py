"""
Quarantine sink for schema-violating messages.

Copies the raw body of a rejected message to a quarantine bucket so it can
be inspected offline. The message itself stays on the queue.
"""

import hashlib

from conduit.clients.interfaces import ObjectStore
from conduit.core.errors import SchemaError
from conduit.observability.logger import get_logger

logger = get_logger(__name__)

QUARANTINE_PREFIX = "schema-violations"


class QuarantineSink:
    """
    Writes rejected message bodies to ``bucket``.

    Keys are derived from the message id (or a digest of the body), so a
    redelivered message overwrites its earlier copy.
    """

    def __init__(self, store: ObjectStore, bucket: str):
        """
        Initialize quarantine sink.

        Args:
            store: Object-store collaborator
            bucket: Bucket receiving quarantined bodies
        """
        self.store = store
        self.bucket = bucket

    def quarantine_key(self, error: SchemaError) -> str:
        body = error.body or b""
        if isinstance(body, str):
            body = body.encode("utf-8")
        identifier = error.message_id or hashlib.sha256(body).hexdigest()
        return f"{QUARANTINE_PREFIX}/{error.reason}/{identifier}.json"

    def write(self, error: SchemaError) -> bool:
        """
        Quarantine the body carried by ``error``.

        Failures are logged and reported through the return value; a failed
        quarantine write must not affect the rest of the batch.

        Returns:
            True if the body was written
        """
        body = error.body or b""
        if isinstance(body, str):
            body = body.encode("utf-8")

        key = self.quarantine_key(error)
        try:
            self.store.put(self.bucket, key, body)
        except Exception as e:
            logger.warning(f"Failed to quarantine message {error.message_id}: {e}")
            return False

        logger.info(f"Quarantined message to s3://{self.bucket}/{key}", extra={"message_id": error.message_id})
        return True
