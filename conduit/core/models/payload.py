"""
Payload model: a notification plus the content fetched for it (ephemeral).
"""

from pydantic import BaseModel

from .artifact import Artifact
from .notification import Notification


class Payload(BaseModel):
    """
    Raw object content paired with the notification that referenced it.

    Created by the fetcher and consumed by the transformer; never persisted.
    """

    notification: Notification
    data: bytes

    class Config:
        frozen = True

    @property
    def text(self) -> str:
        """Content decoded as UTF-8."""
        return self.data.decode("utf-8")

    def to_artifact(self, key: str, content: str | bytes) -> Artifact:
        """Build an artifact that refers back to this payload's notification."""
        return Artifact(key=key, content=content, notification=self.notification)
