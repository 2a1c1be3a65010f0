"""
Artifact model: one transformed output destined for the egress store.
"""

from pydantic import BaseModel, Field

from .notification import Notification


class Artifact(BaseModel):
    """
    Output of a transform, written by the loader under ``key``.

    Attributes:
        key: Destination object key (deterministic keys make reprocessing idempotent)
        content: Text or bytes to write
        notification: Originating notification, handed on for acknowledgement
    """

    key: str = Field(..., min_length=1)
    content: str | bytes
    notification: Notification

    class Config:
        frozen = True

    def body(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")
