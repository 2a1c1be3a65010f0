"""
Collaborator protocols.

The pipeline only needs a handful of operations from the queue and the
object store. Any client satisfying these protocols can be plugged in:
the boto3 adapters in conduit.clients.aws, or in-memory fakes in tests.
"""

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class ReceivedMessage:
    """One message instance returned by a receive call."""

    body: str | bytes
    receipt_handle: str
    message_id: str | None = None


@runtime_checkable
class QueueClient(Protocol):
    """Notification queue with lease-based delivery."""

    def receive(self, max_count: int, visibility_timeout: int) -> Sequence[ReceivedMessage]:
        """Return up to max_count messages, hiding each for visibility_timeout seconds."""
        ...

    def delete(self, receipt_handle: str) -> None:
        """Delete the message instance identified by receipt_handle."""
        ...


@runtime_checkable
class ObjectStore(Protocol):
    """Bucket/key addressed object storage."""

    def get(self, bucket: str, key: str) -> bytes:
        ...

    def put(self, bucket: str, key: str, data: bytes) -> None:
        ...
