"""
Core data models for the conduit pipeline.

All models use Pydantic for runtime validation and are immutable once built.
"""

from .artifact import Artifact
from .notification import Notification, NotificationEnvelope, S3Bucket, S3Entity, S3Object
from .payload import Payload
from .pipeline_config import PipelineConfig

__all__ = [
    "Notification",
    "NotificationEnvelope",
    "S3Bucket",
    "S3Entity",
    "S3Object",
    "Payload",
    "Artifact",
    "PipelineConfig",
]
