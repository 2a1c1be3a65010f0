"""
Notification model representing one decoded S3 event received from the queue.
"""

from datetime import datetime
from typing import Any
from urllib.parse import unquote_plus

from pydantic import BaseModel, Field


class S3Bucket(BaseModel):
    """Bucket portion of the S3 event."""

    name: str = Field(..., min_length=1)
    arn: str = ""

    class Config:
        frozen = True


class S3Object(BaseModel):
    """
    Object portion of the S3 event.

    The key arrives URL-encoded (spaces as '+'); use Notification.key for
    the decoded value.
    """

    key: str = Field(..., min_length=1)
    size: int = 0
    e_tag: str = Field("", alias="eTag")
    sequencer: str = ""

    class Config:
        frozen = True
        populate_by_name = True


class S3Entity(BaseModel):
    """Source-object locator carried by an event."""

    bucket: S3Bucket
    object: S3Object

    class Config:
        frozen = True


class Notification(BaseModel):
    """
    A decoded queue message describing a newly created object.

    Created by the poller, carried unchanged through fetch/transform/load and
    consumed by the acknowledger, which deletes the message with
    receipt_handle.

    Attributes:
        event_version: S3 event schema version (e.g. "2.1")
        event_source: Origin of the event ("aws:s3")
        aws_region: Region the event was raised in
        event_time: When the object was created
        event_name: Event type (e.g. "ObjectCreated:Put")
        s3: Bucket and object locator
        receipt_handle: Delivery handle used to acknowledge the message
        message_id: Queue message identifier (for logs)
    """

    event_version: str = Field("", alias="eventVersion")
    event_source: str = Field("", alias="eventSource")
    aws_region: str = Field("", alias="awsRegion")
    event_time: datetime | None = Field(None, alias="eventTime")
    event_name: str = Field("", alias="eventName")
    s3: S3Entity
    receipt_handle: str = ""
    message_id: str | None = None

    class Config:
        frozen = True
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "eventVersion": "2.1",
                "eventSource": "aws:s3",
                "awsRegion": "us-east-1",
                "eventTime": "2021-10-03T05:05:03.622Z",
                "eventName": "ObjectCreated:Put",
                "s3": {
                    "bucket": {"name": "ingress", "arn": "arn:aws:s3:::ingress"},
                    "object": {
                        "key": "Makefile",
                        "size": 59,
                        "eTag": "2d21a73d66fe9a154b3e7e1442e82c1c",
                        "sequencer": "0055AED6DCD90281E5",
                    },
                },
            }
        }

    @property
    def bucket(self) -> str:
        return self.s3.bucket.name

    @property
    def key(self) -> str:
        """Decoded object key."""
        return unquote_plus(self.s3.object.key)

    def with_delivery(self, receipt_handle: str, message_id: str | None = None) -> "Notification":
        """Return a copy annotated with the message's delivery handle."""
        return self.model_copy(update={"receipt_handle": receipt_handle, "message_id": message_id})

    def log_fields(self) -> dict[str, Any]:
        """Fields attached to log records about this notification."""
        return {
            "message_id": self.message_id,
            "bucket": self.bucket,
            "key": self.key,
        }


class NotificationEnvelope(BaseModel):
    """
    Outer JSON body of a queue message.

    Records are kept raw so the single-event check runs before any record
    is validated.
    """

    records: list[Any] = Field(default_factory=list, alias="Records")

    class Config:
        populate_by_name = True
